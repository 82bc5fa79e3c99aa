"""Rich console setup and pipeline progress helpers."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .models import CombinedDocument, ProviderCandidate
from .pricing import summarize_usage
from .timing import format_eta

console = Console()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure root logger with Rich handler."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


logger = logging.getLogger("bizplan")


# ---------------------------------------------------------------------------
# Pipeline callbacks protocol
# ---------------------------------------------------------------------------


class PipelineCallbacks(Protocol):
    """Protocol for pipeline progress reporting."""

    def on_stage_start(self, index: int, total: int, stage: str, label: str) -> None: ...
    def on_stage_end(self, stage: str, success: bool, detail: str) -> None: ...
    def on_progress(self, fraction: float, remaining_seconds: float) -> None: ...
    def on_warning(self, message: str) -> None: ...
    def on_error(self, message: str) -> None: ...


class RichCallbacks:
    """Rich-based implementation of PipelineCallbacks."""

    def on_stage_start(self, index: int, total: int, stage: str, label: str) -> None:
        console.rule(f"[bold blue]Stage {index}/{total}[/] {label} ({stage})")

    def on_stage_end(self, stage: str, success: bool, detail: str) -> None:
        status = "[green]OK[/]" if success else "[red]FAILED[/]"
        console.print(f"  Stage {stage}: {status} [dim]{detail}[/]")

    def on_progress(self, fraction: float, remaining_seconds: float) -> None:
        console.print(f"  [cyan]{fraction:.0%} done[/], about {format_eta(remaining_seconds)} remaining")

    def on_warning(self, message: str) -> None:
        console.print(f"  [yellow]WARNING:[/] {message}")

    def on_error(self, message: str) -> None:
        console.print(f"  [red]ERROR:[/] {message}")


class SilentCallbacks:
    """Callbacks that report nothing; used by tests and batch sub-runs."""

    def on_stage_start(self, index: int, total: int, stage: str, label: str) -> None:
        pass

    def on_stage_end(self, stage: str, success: bool, detail: str) -> None:
        pass

    def on_progress(self, fraction: float, remaining_seconds: float) -> None:
        pass

    def on_warning(self, message: str) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def print_document_summary(document: CombinedDocument) -> None:
    """Per-stage table of provider, attempts, tokens and cost."""
    table = Table(title="Stages", show_lines=False)
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Provider")
    table.add_column("Attempts", justify="right")
    table.add_column("Tokens (in/out)", justify="right")
    table.add_column("Cost (USD)", justify="right")
    for o in document.outcomes:
        status = "[red]failed[/]" if o.failed else ("[yellow]truncated[/]" if o.truncated else "[green]ok[/]")
        provider = f"{o.used_provider.value}/{o.used_model}" if o.used_provider else "-"
        tokens = f"{o.usage.input_tokens}/{o.usage.output_tokens}" if o.usage else "-"
        cost = "-" if o.usage is None or o.usage.cost_usd is None else f"{o.usage.cost_usd:.4f}"
        table.add_row(o.stage_id.value, status, provider, str(o.attempts), tokens, cost)
    console.print(table)
    totals = summarize_usage(document.usage)
    console.print(
        f"  Total tokens: {totals['input_tokens']:,} in / {totals['output_tokens']:,} out, "
        f"estimated cost: [bold]${totals['cost_usd']:.4f}[/]"
    )
    if totals["unpriced_calls"]:
        console.print(f"  [dim]{totals['unpriced_calls']} call(s) had no price entry[/]")
    if document.used_fallback:
        console.print("  [yellow]Section extraction fell back to concatenated stage output[/]")
    if document.missing_sections:
        console.print(f"  Missing sections: {', '.join(document.missing_sections)}")


def print_chains(chains: dict[str, list[tuple[ProviderCandidate, bool]]]) -> None:
    """Resolved fallback chains, marking candidates without credentials."""
    table = Table(title="Provider chains")
    table.add_column("Task")
    table.add_column("Chain")
    for task_type, chain in chains.items():
        rendered = " -> ".join(
            f"[green]{c}[/]" if available else f"[dim strike]{c}[/]" for c, available in chain
        )
        table.add_row(task_type, rendered)
    console.print(table)
