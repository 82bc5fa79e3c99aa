"""CLI entry point using Hydra.

Usage examples:
  bizplan mode=run idea_file=ideas/acme.yaml
  bizplan mode=run idea_file=ideas/acme.yaml quality_tier=premium search.enabled=false
  bizplan mode=batch idea_file=ideas/shortlist.json output_dir=plans/
  bizplan mode=providers quality_tier=premium
  bizplan mode=sanitize input=plans/acme.md output=plans/acme.clean.md
  bizplan mode=combine input=stages/ output=plan.md
  bizplan --config-dir . --config-name config mode=run single_provider=ollama/gemma2:9b
"""

from __future__ import annotations

import asyncio
import re
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import hydra
from omegaconf import DictConfig, OmegaConf

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_credential_fallbacks, credential_availability, load_ideas, read_existing_plan
from .errors import BizplanError, PipelineCancelledError
from .logging_config import console, print_chains, print_document_summary, setup_logging
from .models import CombinedDocument, ProjectConfig, StageId, StageOutcome

register_configs()

T = TypeVar("T")

_SLUG_RE = re.compile(r"[^\w-]+")

# ---------------------------------------------------------------------------
# Hydra DictConfig → Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra *DictConfig* to a Pydantic ``ProjectConfig``.

    CLI-only keys (``mode``, ``verbose``, etc.) are stripped before validation.
    Provider credential env-var fallbacks are applied afterwards.
    """
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    container.pop("hydra", None)
    config = ProjectConfig.model_validate(container)
    return apply_credential_fallbacks(config)


def slugify(name: str) -> str:
    """File-name-safe slug; keeps Hangul and other word characters."""
    slug = _SLUG_RE.sub("-", name.strip()).strip("-").lower()
    return slug or "plan"


def _write_document(markdown: str, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(markdown, encoding="utf-8")
    return path


def _run_cancellable(factory: Callable[[], Awaitable[T]], cancel: Callable[[], None]) -> T:
    """Run a coroutine with Ctrl-C wired to cooperative cancellation."""

    async def _main() -> T:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel)
            installed = True
        except (NotImplementedError, RuntimeError):
            installed = False
        try:
            return await factory()
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(_main())


def _load_inputs(cfg: DictConfig, config: ProjectConfig):
    idea_path = cfg.get("input") or config.idea_file
    if not idea_path:
        console.print("[red]idea_file (or input=...) is required for this mode[/]")
        sys.exit(1)
    try:
        ideas = load_ideas(idea_path)
        existing_plan = read_existing_plan(config.existing_plan_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)
    return ideas, existing_plan


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _run_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    ideas, existing_plan = _load_inputs(cfg, config)
    idea = ideas[0]
    if len(ideas) > 1:
        console.print(f"[yellow]{len(ideas)} ideas found; generating only {idea.name!r} (use mode=batch for all)[/]")

    from .pipeline import PipelineController

    controller = PipelineController(config)

    console.print(f"[bold]Generating business plan for {idea.name}...[/]")
    try:
        document = _run_cancellable(
            lambda: controller.run(idea, existing_plan=existing_plan),
            controller.cancel,
        )
    except PipelineCancelledError as e:
        console.print(f"\n[bold yellow]Cancelled:[/] {e}")
        sys.exit(130)
    except BizplanError as e:
        console.print(f"\n[bold red]Generation failed.[/]\n  [red]{e}[/]")
        sys.exit(1)

    output = Path(cfg.get("output") or Path(config.output_dir) / f"{slugify(idea.name)}.md")
    _write_document(document.markdown, output)

    status = "[bold yellow]Plan generated with gaps.[/]" if document.partial else "[bold green]Plan generated successfully![/]"
    console.print(f"\n{status}")
    console.print(f"  Output: {output}")
    print_document_summary(document)


def _batch_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)
    ideas, existing_plan = _load_inputs(cfg, config)

    from .pipeline import PipelineController

    controller = PipelineController(config)

    console.print(f"[bold]Generating {len(ideas)} business plan(s) sequentially...[/]")
    try:
        results = _run_cancellable(
            lambda: controller.run_batch(ideas, existing_plan=existing_plan),
            controller.cancel,
        )
    except PipelineCancelledError as e:
        console.print(f"\n[bold yellow]Batch cancelled:[/] {e}")
        sys.exit(130)
    except BizplanError as e:
        console.print(f"\n[bold red]Batch failed.[/]\n  [red]{e}[/]")
        sys.exit(1)

    output_dir = Path(cfg.get("output") or config.output_dir)
    failures = 0
    for item in results:
        if item.document is None:
            failures += 1
            console.print(f"  [red]FAILED[/] {item.idea_name}: {item.error}")
            continue
        path = _write_document(item.document.markdown, output_dir / f"{slugify(item.idea_name)}.md")
        console.print(f"  [green]OK[/] {item.idea_name} -> {path}")

    console.print(f"\n[bold]{len(results) - failures}/{len(results)} plan(s) generated[/]")
    if failures == len(results):
        sys.exit(1)


def _providers_mode(cfg: DictConfig) -> None:
    config = _to_project_config(cfg)

    from .presets import PresetResolver
    from .stages import STAGES

    availability = credential_availability(config.providers)
    console.print("[bold]Credentials:[/]")
    for provider_id, available in availability.items():
        mark = "[green]available[/]" if available else "[red]missing[/]"
        console.print(f"  {provider_id.value}: {mark}")
    search_mark = "[green]available[/]" if config.providers.tavily_api_key else "[dim]missing (search disabled)[/]"
    console.print(f"  tavily: {search_mark}")

    resolver = PresetResolver(availability, presets=config.presets, single_provider=config.single_provider)
    try:
        chains = resolver.describe(config.quality_tier, [s.task_type for s in STAGES])
    except BizplanError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)
    console.print(f"\n[bold]Tier:[/] {config.quality_tier.value}")
    print_chains(chains)

    unusable = [task for task, chain in chains.items() if not any(ok for _, ok in chain)]
    if unusable:
        console.print(f"[red]No usable provider for: {', '.join(unusable)}[/]")
        sys.exit(1)


def _sanitize_mode(cfg: DictConfig) -> None:
    from .sanitizer import sanitize

    source = cfg.get("input")
    if not source:
        console.print("[red]input is required for sanitize mode[/]")
        sys.exit(1)
    source_path = Path(source)
    if not source_path.exists():
        console.print(f"[red]File not found: {source_path}[/]")
        sys.exit(1)

    original = source_path.read_text(encoding="utf-8")
    cleaned = sanitize(original)
    target = Path(cfg.get("output") or source_path)
    _write_document(cleaned, target)
    changed = "updated" if cleaned != original else "already clean"
    console.print(f"[green]Sanitized {source_path} -> {target} ({changed})[/]")


def _combine_mode(cfg: DictConfig) -> None:
    from .combiner import combine
    from .pipeline import document_title
    from .sanitizer import sanitize

    source = cfg.get("input")
    if not source or not Path(source).is_dir():
        console.print("[red]input must be a directory containing <stage>.md files[/]")
        sys.exit(1)

    config = _to_project_config(cfg)
    outcomes: list[StageOutcome] = []
    for stage_id in StageId:
        path = Path(source) / f"{stage_id.value}.md"
        if path.exists():
            content = path.read_text(encoding="utf-8").strip()
            outcomes.append(StageOutcome(stage_id=stage_id, content=content))
        else:
            console.print(f"  [dim]No {path.name}; treating stage as failed[/]")
            outcomes.append(StageOutcome(stage_id=stage_id, failed=True, error=f"{path.name} not found"))

    title = config.project_name
    if config.idea_file:
        try:
            title = document_title(load_ideas(config.idea_file)[0])
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[yellow]WARNING:[/] {e}; using project name as title")

    document: CombinedDocument = combine(outcomes, title=title, min_sections=config.min_extracted_sections)
    markdown = sanitize(document.markdown)
    output = cfg.get("output")
    if output:
        _write_document(markdown, Path(output))
        console.print(f"[green]Written to {output}[/]")
    else:
        console.print(markdown, markup=False, highlight=False)
    for warning in document.warnings:
        console.print(f"  [yellow]WARNING:[/] {warning}")


_MODE_DISPATCH: dict[str, Any] = {
    "run": _run_mode,
    "batch": _batch_mode,
    "providers": _providers_mode,
    "sanitize": _sanitize_mode,
    "combine": _combine_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path="conf", config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "run")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    handler(cfg)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
