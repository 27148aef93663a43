"""prodbeam -- credentials and OAuth for the GitHub and Jira integrations.

prodbeam reads activity from GitHub and Jira. This package holds the part
that decides *how* it authenticates: environment overrides, stored API
tokens, and OAuth sessions that refresh themselves.

Typical workflow::

    prodbeam auth login     # browser login or paste a token
    prodbeam auth status    # where each credential comes from

Modules:
    app: Typer application and CLI entry point.
    auth: Credential store, OAuth flows, and the credential resolver.
    models: Pydantic models shared across the package.
    config: Config directory, environment overrides, OAuth app settings.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
