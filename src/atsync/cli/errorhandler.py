"""CLI error handling utilities."""

from collections.abc import Generator
from contextlib import contextmanager

import typer
from rich.table import Table

from atsync.config.exceptions import ConfigNotFoundError, ConfigValidationError
from atsync.exceptions import (
    AtsyncError,
    AuthenticationError,
    HandleResolutionError,
    InvalidAtUriError,
    MissingSessionError,
    StreamError,
)
from atsync.logging_setup import console


@contextmanager
def handle_cli_errors(*, debug: bool = False) -> Generator[None, None, None]:
    """Turn atsync errors into short messages and a non-zero exit code.

    Args:
        debug: If True, re-raise so the full traceback is shown.

    """
    try:
        yield
    except (KeyboardInterrupt, SystemExit):
        raise
    except ConfigNotFoundError as e:
        if debug:
            raise
        console.print(f"[bold red]Config not found:[/bold red] {e.path}")
        raise typer.Exit(2) from e
    except ConfigValidationError as e:
        if debug:
            raise
        table = Table(title="Configuration Errors", show_header=True)
        table.add_column("Field", style="cyan", no_wrap=True)
        table.add_column("Error", style="red")
        for error in e.errors:
            table.add_row(" -> ".join(str(part) for part in error.get("loc", ())), str(error.get("msg", "")))
        console.print(table)
        raise typer.Exit(2) from e
    except MissingSessionError as e:
        if debug:
            raise
        console.print(f"[bold red]Login required:[/bold red] {e}")
        console.print("Set [bold]ATSYNC_REPOSITORY__IDENTIFIER[/bold] and [bold]ATSYNC_REPOSITORY__PASSWORD[/bold].")
        raise typer.Exit(1) from e
    except AuthenticationError as e:
        if debug:
            raise
        console.print(f"[bold red]Authentication failed:[/bold red] {e}")
        raise typer.Exit(1) from e
    except (HandleResolutionError, InvalidAtUriError) as e:
        if debug:
            raise
        console.print(f"[bold red]Bad identifier:[/bold red] {e}")
        raise typer.Exit(1) from e
    except StreamError as e:
        if debug:
            raise
        console.print(f"[bold red]Stream error:[/bold red] {e}")
        raise typer.Exit(1) from e
    except (AtsyncError, ValueError) as e:
        if debug:
            raise
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from e
