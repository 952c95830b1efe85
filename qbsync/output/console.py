# qbsync Console Output
# Rich-based console output for user-friendly display

from typing import TYPE_CHECKING

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from qbsync.sync.actions import RunResult
    from qbsync.sync.engine import RepoStatus


class Console:
    """
    Console output manager using Rich.

    Every diagnostic the engine produces goes through one of these.
    """

    def __init__(self, *, verbose: bool = False, colored: bool = True, quiet: bool = False):
        """
        Initialize console.

        Args:
            verbose: Enable verbose output.
            colored: Enable colored output.
            quiet: Suppress all output.
        """
        self.verbose = verbose
        self._console = RichConsole(force_terminal=colored, no_color=not colored, quiet=quiet)

    @property
    def rich(self) -> RichConsole:
        """Underlying rich console (for prompts)."""
        return self._console

    def print(self, *args, **kwargs) -> None:
        """Print to console."""
        self._console.print(*args, **kwargs)

    def print_error(self, message: str) -> None:
        """Print error message."""
        self._console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        self._console.print(f"[yellow]Warning:[/yellow] {message}", highlight=False)

    def print_success(self, message: str) -> None:
        """Print success message."""
        self._console.print(f"[green]{message}[/green]")

    def print_info(self, message: str) -> None:
        """Print info message."""
        self._console.print(f"[blue]{message}[/blue]")

    def print_debug(self, message: str) -> None:
        """Print message only in verbose mode."""
        if self.verbose:
            self._console.print(f"[dim]{message}[/dim]", highlight=False)

    def print_run_result(self, result: "RunResult") -> None:
        """
        Print a run summary.

        Args:
            result: Result of a create/export/import/delete run.
        """
        if self.verbose or result.failed_items:
            self._print_item_table(result)

        self._console.print()
        lines = [
            f"Questions: {result.created} created, {result.updated} updated, "
            f"{result.skipped} skipped, {result.errors} errors",
        ]
        if result.categories_imported:
            lines.append(f"Categories imported: {result.categories_imported}")
        if result.removed:
            lines.append(f"Removed from manifest: {len(result.removed)}")

        if result.aborted:
            title_text = f"[red]{result.operation.capitalize()} aborted[/red]"
            if result.error:
                lines.append(f"[red]{result.error}[/red]")
            border = "red"
        elif result.success:
            title_text = f"[green]{result.operation.capitalize()} completed[/green]"
            border = "green"
        else:
            title_text = f"[yellow]{result.operation.capitalize()} completed with errors[/yellow]"
            border = "yellow"

        self._console.print(Panel("\n".join([title_text, *lines]), title="Summary", border_style=border))

    def _print_item_table(self, result: "RunResult") -> None:
        """Print per-question results."""
        table = Table(show_header=True, header_style="bold")
        table.add_column("", width=2)
        table.add_column("Question")
        table.add_column("File")
        table.add_column("Action")
        table.add_column("Details")

        for item in result.items:
            if item.success and not self.verbose:
                continue
            icon = "[green]✓[/green]" if item.success else "[red]✗[/red]"
            details = item.error or item.reason
            table.add_row(icon, item.entity_id or "-", item.file_path or "-", item.action_type.value, details)

        self._console.print(table)

    def print_status(self, status: "RepoStatus") -> None:
        """
        Print repository status.

        Args:
            status: Status computed by the sync engine.
        """
        table = Table(show_header=False, box=None)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        table.add_row("Manifest", str(status.manifest_path))
        table.add_row("Tracked questions", str(status.tracked))
        table.add_row("In scope", str(status.in_scope))
        table.add_row("Missing files", _count_style(len(status.missing_files)))
        table.add_row("Untracked files", _count_style(len(status.untracked_files)))
        table.add_row("Pending staged records", _count_style(status.pending_staged))
        self._console.print(table)

        if self.verbose or status.missing_files:
            for path in status.missing_files:
                self._console.print(f"  [red]×[/red] {path} (missing)")
        if self.verbose or status.untracked_files:
            for path in status.untracked_files:
                self._console.print(f"  [yellow]+[/yellow] {path} (untracked)")


def _count_style(count: int) -> str:
    return f"[yellow]{count}[/yellow]" if count else "[green]0[/green]"


def create_console(*, verbose: bool = False, colored: bool = True, quiet: bool = False) -> Console:
    """
    Create a console instance.

    Args:
        verbose: Enable verbose output.
        colored: Enable colored output.
        quiet: Suppress all output.

    Returns:
        Console instance.
    """
    return Console(verbose=verbose, colored=colored, quiet=quiet)
