"""Built-in CLI sub-commands for prodbeam.

* :mod:`~prodbeam.commands.auth` -- log in to GitHub and Jira, show
  credential status, and log out.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :func:`prodbeam.app.main`.
"""
