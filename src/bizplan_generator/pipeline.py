"""PipelineController: five-stage business plan generation.

Stage 1: MARKET       sections 2, 3, 8
Stage 2: COMPETITION  sections 5, 6, 7
Stage 3: STRATEGY     sections 1, 4, 9, 10
Stage 4: FINANCE      sections 11, 12, 13, references
Stage 5: DEVIL        risk summary + section 14 (optional)

Stages run strictly in order, each seeing the content of the ones before
it.  A failed stage leaves a gap the combiner reports; only the failure of
every content stage aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .cancellation import CancellationToken
from .combiner import combine
from .config import credential_availability
from .errors import AllStagesFailedError, PipelineCancelledError
from .logging_config import PipelineCallbacks, RichCallbacks
from .models import (
    BatchItemResult,
    CombinedDocument,
    GenerationRequest,
    Idea,
    PipelineState,
    ProjectConfig,
    ProviderCandidate,
    SearchResult,
    StageId,
    StageOutcome,
)
from .presets import PresetResolver
from .prompts import build_stage_prompt, search_queries
from .providers.client import ProviderClient
from .sanitizer import sanitize
from .search import SearchCollaborator, make_search
from .stage_runner import GenerationClient, StageRunner
from .stages import CONTENT_STAGES, STAGES, StageSpec
from .timing import EtaTracker, TimingStore, make_timing_store

logger = logging.getLogger(__name__)


def document_title(idea: Idea) -> str:
    return f"{idea.name} 사업기획서"


@dataclass
class PipelineRun:
    """Transient state of one run; discarded when the run ends."""
    idea: Idea
    eta: EtaTracker
    existing_plan: str | None = None
    outcomes: list[StageOutcome] = field(default_factory=list)

    def previous_content(self) -> dict[StageId, str]:
        return {o.stage_id: o.content for o in self.outcomes if not o.failed and o.content}


class PipelineController:
    """Runs the five stages for one idea at a time.

    Collaborators (provider client, search, timing store) are injectable so
    tests can drive the controller without network access.
    """

    def __init__(
        self,
        config: ProjectConfig,
        *,
        client: GenerationClient | None = None,
        search: SearchCollaborator | None = None,
        timing_store: TimingStore | None = None,
        resolver: PresetResolver | None = None,
        callbacks: PipelineCallbacks | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.config = config
        self.callbacks = callbacks or RichCallbacks()
        self.resolver = resolver or PresetResolver(
            credential_availability(config.providers),
            presets=config.presets,
            single_provider=config.single_provider,
        )
        self.client = client or ProviderClient(config.providers, config.retry)
        self.runner = StageRunner(self.client, timeout_s=config.retry.request_timeout_seconds)
        self.search = search or make_search(config)
        self.timing_store = timing_store or make_timing_store(config)
        self.cancel_token = cancel_token or CancellationToken()

        # State
        self.state = PipelineState.IDLE
        self.current_stage: StageId | None = None
        self._run: PipelineRun | None = None

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Request cancellation; the running stage aborts at its next suspension point."""
        self.cancel_token.cancel(reason)

    # -----------------------------------------------------------------------
    # Chains
    # -----------------------------------------------------------------------

    def resolve_chains(self) -> dict[StageId, list[ProviderCandidate]]:
        """Fallback chain per stage.  Configuration errors surface here, before any call."""
        tier = self.config.quality_tier
        return {spec.stage_id: self.resolver.resolve(tier, spec.task_type) for spec in STAGES}

    # -----------------------------------------------------------------------
    # Full run
    # -----------------------------------------------------------------------

    async def run(self, idea: Idea, *, existing_plan: str | None = None) -> CombinedDocument:
        """Generate one full plan.

        Raises ``AllStagesFailedError`` when stages 1-4 all fail and
        ``PipelineCancelledError`` when the token fires.
        """
        chains = self.resolve_chains()
        run = PipelineRun(
            idea=idea,
            eta=EtaTracker(self.timing_store, [s.stage_id.value for s in STAGES]),
            existing_plan=existing_plan,
        )
        self._run = run
        logger.info("Generating plan for %r (%s tier)", idea.name, self.config.quality_tier.value)

        try:
            for spec in STAGES:
                self.cancel_token.raise_if_cancelled()
                self.state = PipelineState.RUNNING_STAGE
                self.current_stage = spec.stage_id
                self.callbacks.on_stage_start(spec.number, len(STAGES), spec.stage_id.value, spec.label)

                outcome = await self._run_stage(spec, run, chains[spec.stage_id])
                run.outcomes.append(outcome)

                if outcome.failed:
                    detail = outcome.error or "failed"
                    if spec.content_bearing:
                        self.callbacks.on_warning(f"{spec.label} ({spec.stage_id.value}) failed: {detail}")
                else:
                    detail = f"{outcome.used_provider.value}/{outcome.used_model}, {outcome.duration_seconds:.0f}s"
                self.callbacks.on_stage_end(spec.stage_id.value, not outcome.failed, detail)
                self.callbacks.on_progress(run.eta.progress(), run.eta.remaining_seconds())
        except PipelineCancelledError:
            self.state = PipelineState.ABORTED
            self._run = None
            logger.warning("Run for %r cancelled during %s", idea.name, self.current_stage)
            raise

        failed = [o for o in run.outcomes if o.failed and o.stage_id in {s.stage_id for s in CONTENT_STAGES}]
        if len(failed) == len(CONTENT_STAGES):
            self.state = PipelineState.FAILED
            self._run = None
            raise AllStagesFailedError(
                [o.stage_id.value for o in failed],
                {o.stage_id.value: o.error or "" for o in failed},
            )

        self.current_stage = None
        self.state = PipelineState.COMBINING
        document = combine(
            run.outcomes,
            title=document_title(idea),
            min_sections=self.config.min_extracted_sections,
        )

        self.state = PipelineState.SANITIZING
        document = document.model_copy(update={"markdown": sanitize(document.markdown)})

        self.state = PipelineState.DONE
        self._run = None
        for warning in document.warnings:
            self.callbacks.on_warning(warning)
        logger.info(
            "Plan for %r done: %d section(s) missing, estimated cost $%.4f",
            idea.name, len(document.missing_sections), document.total_cost_usd,
        )
        return document

    async def _run_stage(
        self,
        spec: StageSpec,
        run: PipelineRun,
        candidates: list[ProviderCandidate],
    ) -> StageOutcome:
        run.eta.start_stage(spec.stage_id.value)
        results = await self._gather_search(spec, run.idea)
        prompt = build_stage_prompt(
            spec,
            run.idea,
            search_results=results,
            previous=run.previous_content(),
            existing_plan=run.existing_plan,
        )
        request = GenerationRequest(
            task_type=spec.task_type,
            payload=prompt,
            max_tokens=self.config.stage_max_tokens,
        )
        outcome = await self.runner.run(spec.stage_id, candidates, request, self.cancel_token)
        duration = run.eta.finish_stage(spec.stage_id.value, record=not outcome.failed)
        return outcome.model_copy(update={"duration_seconds": duration})

    async def _gather_search(self, spec: StageSpec, idea: Idea) -> list[SearchResult]:
        """Search results for the stage's queries, de-duplicated by URL.

        Search is best-effort: a collaborator that raises contributes nothing.
        """
        if not self.config.search.enabled:
            return []
        results: list[SearchResult] = []
        seen: set[str] = set()
        for query in search_queries(spec, idea):
            try:
                hits = await self.cancel_token.guard(
                    self.search.search(query, self.config.search.count, self.config.search.depth)
                )
            except PipelineCancelledError:
                raise
            except Exception as exc:
                logger.warning("[%s] search for %r failed: %s", spec.stage_id.value, query, exc)
                continue
            for hit in hits:
                key = hit.url or hit.title
                if key and key not in seen:
                    seen.add(key)
                    results.append(hit)
        logger.debug("[%s] %d search result(s)", spec.stage_id.value, len(results))
        return results

    # -----------------------------------------------------------------------
    # Batch
    # -----------------------------------------------------------------------

    async def run_batch(
        self,
        ideas: list[Idea],
        *,
        existing_plan: str | None = None,
    ) -> list[BatchItemResult]:
        """Generate plans for several ideas, one after another.

        An idea whose stages all fail is recorded and skipped; cancellation
        stops the whole batch.
        """
        results: list[BatchItemResult] = []
        for position, idea in enumerate(ideas, 1):
            logger.info("Batch %d/%d: %s", position, len(ideas), idea.name)
            try:
                document = await self.run(idea, existing_plan=existing_plan)
            except AllStagesFailedError as exc:
                self.callbacks.on_error(f"{idea.name}: {exc}")
                results.append(BatchItemResult(idea_name=idea.name, error=str(exc)))
                continue
            results.append(BatchItemResult(idea_name=idea.name, document=document))
        return results
