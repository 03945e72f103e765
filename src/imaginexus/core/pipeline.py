"""Image submission pipeline: upload → analysis → generation → record.

This module wires the pipeline stages together and tracks each run through
an explicit state machine.

Run States
----------
::

    Idle → Validating → Previewing → Analyzing → (AnalysisFallback) → Analyzed
         → QuotaCheck → Generating → Completed

``Failed`` is reachable from Validating, Analyzing, AnalysisFallback,
QuotaCheck and Generating. Completed and Failed are terminal; every new
upload starts a fresh :class:`PipelineRun`.

Components
----------
AnalysisOrchestrator
    Calls the analysis client once. If the failure message says the image
    could not be converted or analysed, each degradation strategy is applied
    and retried exactly once, in order. Any other failure is terminal.
GenerationOrchestrator
    Refuses before contacting the generation client when the quota gate
    says no, then records the artifact and returns the quota snapshot
    re-read by the repository. Counters are never adjusted locally.
ImageSubmissionPipeline
    Runs the whole flow for one upload and never raises for pipeline
    errors; the run ends in Completed or Failed with the error attached.
SubmissionSession
    Per-user holder of the current selection. A version counter, bumped on
    every new selection or clear, discards results of runs that finished
    after the user moved on.
SessionRegistry
    Bounded map of user id to session. Read paths look sessions up without
    creating them; once the bound is exceeded the least recently used idle
    sessions are evicted.

Usage
-----
::

    pipeline = ImageSubmissionPipeline(analysis, generation)
    run = await pipeline.run(
        user_id="u1",
        data=payload,
        media_type="image/jpeg",
        max_bytes=config.general_upload_max_bytes,
        style="ghibli",
    )
    if run.state is PipelineState.COMPLETED:
        print(run.artifact.image_url, run.quota.ghibli_images_generated)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from enum import Enum

from imaginexus.clients.analysis import AnalysisClient
from imaginexus.clients.generation import GenerationClient
from imaginexus.clients.persistence import QuotaRepository

from .errors import (
    AnalysisError,
    AnalysisFallbackError,
    GenerationError,
    ImaginexusError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
)
from .imaging import DegradationStrategy, default_degradation_strategies
from .models import GeneratedArtifact, QuotaState, UploadCandidate
from .tiers import check_quota
from .uploads import materialize_preview, validate_upload

logger = logging.getLogger(__name__)

# Failure messages that mean the payload itself was the problem, so a
# degraded copy is worth one more attempt.
FALLBACK_TRIGGERS: tuple[str, ...] = ("failed to convert", "failed to analyze")


class PipelineState(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    PREVIEWING = "Previewing"
    ANALYZING = "Analyzing"
    ANALYSIS_FALLBACK = "AnalysisFallback"
    ANALYZED = "Analyzed"
    QUOTA_CHECK = "QuotaCheck"
    GENERATING = "Generating"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.VALIDATING, PipelineState.QUOTA_CHECK}),
    PipelineState.VALIDATING: frozenset({PipelineState.PREVIEWING, PipelineState.FAILED}),
    PipelineState.PREVIEWING: frozenset({PipelineState.ANALYZING}),
    PipelineState.ANALYZING: frozenset(
        {PipelineState.ANALYZED, PipelineState.ANALYSIS_FALLBACK, PipelineState.FAILED}
    ),
    PipelineState.ANALYSIS_FALLBACK: frozenset({PipelineState.ANALYZED, PipelineState.FAILED}),
    PipelineState.ANALYZED: frozenset({PipelineState.QUOTA_CHECK}),
    PipelineState.QUOTA_CHECK: frozenset({PipelineState.GENERATING, PipelineState.FAILED}),
    PipelineState.GENERATING: frozenset({PipelineState.COMPLETED, PipelineState.FAILED}),
    PipelineState.COMPLETED: frozenset(),
    PipelineState.FAILED: frozenset(),
}


class PipelineBusyError(ImaginexusError):
    """A run is already in flight for this session."""


@dataclass
class PipelineRun:
    """State and results of one end-to-end pipeline attempt."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])
    candidate: UploadCandidate | None = None
    preview: str | None = None
    description: str | None = None
    artifact: GeneratedArtifact | None = None
    quota: QuotaState | None = None
    error: ImaginexusError | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (PipelineState.COMPLETED, PipelineState.FAILED)

    @property
    def used_fallback(self) -> bool:
        return PipelineState.ANALYSIS_FALLBACK in self.history

    def transition(self, new_state: PipelineState) -> None:
        """Move to ``new_state``.

        Raises:
            RuntimeError: If the transition is not allowed from the current state.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {new_state.value}")
        logger.debug(f"[run {self.run_id}] {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self, error: ImaginexusError) -> None:
        self.error = error
        self.transition(PipelineState.FAILED)
        logger.error(f"[run {self.run_id}] failed: {error}")


def _is_fallback_trigger(error: Exception) -> bool:
    message = str(error).lower()
    return any(trigger in message for trigger in FALLBACK_TRIGGERS)


class AnalysisOrchestrator:
    """Obtain a description of an upload with a bounded fallback.

    Args:
        client: Analysis client.
        instruction: Fixed instruction sent with every image.
        strategies: Ordered degradation strategies; each is tried once.
    """

    def __init__(
        self,
        client: AnalysisClient,
        instruction: str,
        strategies: list[DegradationStrategy] | None = None,
    ) -> None:
        self.client = client
        self.instruction = instruction
        self.strategies = (
            list(strategies) if strategies is not None else default_degradation_strategies()
        )

    async def _attempt(self, candidate: UploadCandidate) -> str:
        if not candidate.data:
            raise AnalysisError("Failed to convert image: empty payload")

        try:
            description = await self.client.describe(
                candidate.data, candidate.media_type, self.instruction
            )
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(str(e) or "Failed to analyze image") from e

        if not isinstance(description, str) or not description.strip():
            raise AnalysisError("Failed to analyze image: no description returned")
        return description.strip()

    async def analyze(self, candidate: UploadCandidate, run: PipelineRun | None = None) -> str:
        """Describe ``candidate``.

        Args:
            candidate: Validated upload.
            run: Run to advance through Analyzing / AnalysisFallback, if any.
                The caller is responsible for entering Analyzing.

        Returns:
            Non-empty description text.

        Raises:
            AnalysisError: If the first attempt failed for a reason no
                degraded copy can fix.
            AnalysisFallbackError: If the first attempt and every
                degradation strategy failed.
        """
        try:
            return await self._attempt(candidate)
        except AnalysisError as e:
            logger.warning(f"Analysis of {candidate.filename} failed: {e}", exc_info=True)
            if not _is_fallback_trigger(e) or not self.strategies:
                raise
            attempts = [str(e)]

        if run is not None:
            run.transition(PipelineState.ANALYSIS_FALLBACK)

        for strategy in self.strategies:
            logger.warning(f"Retrying analysis of {candidate.filename} with {strategy.name}")
            try:
                degraded = await asyncio.to_thread(strategy.apply, candidate)
                return await self._attempt(degraded)
            except Exception as e:
                logger.error(f"Fallback {strategy.name} failed: {e}", exc_info=True)
                attempts.append(f"{strategy.name}: {e}")

        raise AnalysisFallbackError(attempts)


@dataclass(frozen=True)
class GenerationOutcome:
    """A recorded artifact plus the quota snapshot re-read after recording."""

    artifact: GeneratedArtifact
    quota: QuotaState


class GenerationOrchestrator:
    """Gate, generate and record one image.

    Args:
        client: Generation client.
        repository: Quota/persistence repository (read-through only).
    """

    def __init__(self, client: GenerationClient, repository: QuotaRepository) -> None:
        self.client = client
        self.repository = repository

    async def read_quota(self, user_id: str) -> QuotaState:
        """Return the user's quota snapshot.

        Raises:
            PersistenceError: If the repository fails.
        """
        try:
            return await asyncio.to_thread(self.repository.read, user_id)
        except ImaginexusError:
            raise
        except Exception as e:
            logger.error(f"Quota read failed for user {user_id}", exc_info=True)
            raise PersistenceError("Could not load your plan. Please try again.") from e

    async def _record(self, artifact: GeneratedArtifact) -> tuple[str, QuotaState]:
        try:
            return await asyncio.to_thread(self.repository.record_and_refresh, artifact)
        except ImaginexusError:
            raise
        except Exception as e:
            logger.error(f"Recording image for user {artifact.user_id} failed", exc_info=True)
            raise PersistenceError("Could not save your image. Please try again.") from e

    async def generate(
        self,
        user_id: str,
        prompt: str,
        style: str,
        aspect_ratio: str = "1:1",
        *,
        quality: str | None = None,
        detail_level: str | None = None,
        run: PipelineRun | None = None,
    ) -> GenerationOutcome:
        """Generate an image for ``prompt`` if the user's quota allows it.

        Args:
            user_id: Owner of the new image.
            prompt: Non-empty description.
            style: Style token.
            aspect_ratio: Aspect-ratio token (passed through).
            quality: Optional quality hint for the generation client.
            detail_level: Optional resolution hint for the generation client.
            run: Run to advance through QuotaCheck / Generating, if any.

        Returns:
            GenerationOutcome with the stored artifact and refreshed quota.

        Raises:
            ValidationError: If the prompt is blank.
            QuotaExceededError: If the gate refuses; the generation client
                is not called.
            GenerationError: If the generation client fails.
            PersistenceError: If the quota could not be read or the image
                could not be recorded.
        """
        if run is not None:
            run.transition(PipelineState.QUOTA_CHECK)

        if not prompt or not prompt.strip():
            raise ValidationError("EmptyPrompt", "Please enter a prompt first")

        state = await self.read_quota(user_id)
        decision = check_quota(state, style)
        if not decision.allowed:
            logger.info(f"Quota gate refused {style} for user {user_id}: {decision.reason.value}")
            raise QuotaExceededError(decision.reason)

        if run is not None:
            run.transition(PipelineState.GENERATING)

        try:
            result = await self.client.generate(
                prompt.strip(),
                style,
                user_id,
                aspect_ratio=aspect_ratio,
                quality=quality,
                detail_level=detail_level,
            )
        except GenerationError:
            logger.error(f"Generation failed for user {user_id}", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Generation failed for user {user_id}", exc_info=True)
            raise GenerationError(str(e) or "Failed to generate image") from e

        if not result.image_url:
            raise GenerationError("No image URL received in response")

        artifact = GeneratedArtifact(
            image_url=result.image_url,
            prompt=result.prompt,
            style=style,
            aspect_ratio=aspect_ratio,
            user_id=user_id,
        )
        image_id, refreshed = await self._record(artifact)
        return GenerationOutcome(artifact=replace(artifact, id=image_id), quota=refreshed)


class ImageSubmissionPipeline:
    """Run uploads end to end.

    Args:
        analysis: Analysis orchestrator.
        generation: Generation orchestrator.
    """

    def __init__(self, analysis: AnalysisOrchestrator, generation: GenerationOrchestrator) -> None:
        self.analysis = analysis
        self.generation = generation

    async def describe_upload(
        self,
        data: bytes,
        media_type: str | None,
        max_bytes: int,
        filename: str = "",
        declared_size: int | None = None,
    ) -> PipelineRun:
        """Validate and analyse an upload, stopping at Analyzed.

        The returned description can be edited and submitted as a plain
        text prompt later.
        """
        run = PipelineRun()
        preview_task = await self._validate_and_preview(
            run, data, media_type, max_bytes, filename, declared_size
        )
        if preview_task is not None:
            try:
                await self._analyze(run)
            finally:
                run.preview = await preview_task
        return run

    async def run(
        self,
        user_id: str,
        data: bytes,
        media_type: str | None,
        max_bytes: int,
        style: str,
        aspect_ratio: str = "1:1",
        filename: str = "",
        declared_size: int | None = None,
    ) -> PipelineRun:
        """Run the full pipeline for one upload.

        Pipeline errors never propagate; inspect ``run.state`` and
        ``run.error``.
        """
        run = PipelineRun()
        preview_task = await self._validate_and_preview(
            run, data, media_type, max_bytes, filename, declared_size
        )
        if preview_task is None:
            return run

        try:
            if await self._analyze(run):
                await self._generate(run, user_id, run.description, style, aspect_ratio)
        finally:
            run.preview = await preview_task
        return run

    async def generate_from_prompt(
        self,
        user_id: str,
        prompt: str,
        style: str,
        aspect_ratio: str = "1:1",
        quality: str | None = None,
        detail_level: str | None = None,
    ) -> PipelineRun:
        """Run only the QuotaCheck → Generating part for a text prompt."""
        run = PipelineRun(description=prompt)
        await self._generate(
            run,
            user_id,
            prompt,
            style,
            aspect_ratio,
            quality=quality,
            detail_level=detail_level,
        )
        return run

    async def _validate_and_preview(
        self,
        run: PipelineRun,
        data: bytes,
        media_type: str | None,
        max_bytes: int,
        filename: str,
        declared_size: int | None,
    ) -> asyncio.Task | None:
        run.transition(PipelineState.VALIDATING)
        try:
            run.candidate = validate_upload(data, media_type, max_bytes, filename, declared_size)
        except ValidationError as e:
            run.fail(e)
            return None

        run.transition(PipelineState.PREVIEWING)
        # The preview never gates later stages; it is collected at the end.
        return asyncio.create_task(materialize_preview(run.candidate))

    async def _generate(
        self,
        run: PipelineRun,
        user_id: str,
        prompt: str,
        style: str,
        aspect_ratio: str,
        quality: str | None = None,
        detail_level: str | None = None,
    ) -> None:
        try:
            outcome = await self.generation.generate(
                user_id,
                prompt,
                style,
                aspect_ratio,
                quality=quality,
                detail_level=detail_level,
                run=run,
            )
        except ImaginexusError as e:
            run.fail(e)
            return
        run.artifact = outcome.artifact
        run.quota = outcome.quota
        run.transition(PipelineState.COMPLETED)
        logger.info(f"[run {run.run_id}] completed: {outcome.artifact.image_url}")

    async def _analyze(self, run: PipelineRun) -> bool:
        run.transition(PipelineState.ANALYZING)
        try:
            run.description = await self.analysis.analyze(run.candidate, run=run)
        except AnalysisError as e:
            run.fail(e)
            return False
        run.transition(PipelineState.ANALYZED)
        return True


class SubmissionSession:
    """Per-user selection state with a busy flag and a stale-result guard.

    Every :meth:`submit` and :meth:`clear` bumps ``version``. A run only
    updates the session if the version it started with is still current when
    it finishes; otherwise its result is dropped from the session (the run
    object itself is still returned to the caller).
    """

    def __init__(self, user_id: str, pipeline: ImageSubmissionPipeline) -> None:
        self.user_id = user_id
        self.pipeline = pipeline
        self.version = 0
        self.busy = False
        self.current_run: PipelineRun | None = None
        self.quota: QuotaState | None = None
        self.artifact: GeneratedArtifact | None = None

    def clear(self) -> None:
        """Discard the current selection; any in-flight result becomes stale."""
        self.version += 1
        self.current_run = None
        self.artifact = None
        logger.debug(f"Session for {self.user_id} cleared (version {self.version})")

    async def refresh_quota(self) -> QuotaState:
        self.quota = await self.pipeline.generation.read_quota(self.user_id)
        return self.quota

    async def submit(
        self,
        data: bytes,
        media_type: str | None,
        max_bytes: int,
        style: str,
        aspect_ratio: str = "1:1",
        filename: str = "",
        declared_size: int | None = None,
    ) -> PipelineRun:
        """Select a new file and run the pipeline for it.

        Raises:
            PipelineBusyError: If a run for this session is still in flight.
        """
        if self.busy:
            raise PipelineBusyError("An image is already being processed. Please wait.")

        self.version += 1
        started_version = self.version
        self.busy = True
        self.artifact = None
        try:
            run = await self.pipeline.run(
                self.user_id,
                data,
                media_type,
                max_bytes,
                style,
                aspect_ratio,
                filename=filename,
                declared_size=declared_size,
            )
        finally:
            self.busy = False

        if started_version != self.version:
            logger.info(f"[run {run.run_id}] result discarded: selection changed")
            return run

        # The session outlives the request; keep the outcome, not the payload.
        self.current_run = replace(
            run, candidate=None, preview=None, history=list(run.history)
        )
        if run.state is PipelineState.COMPLETED:
            self.artifact = run.artifact
            self.quota = run.quota
        return run


class SessionRegistry:
    """Least-recently-used map of user id to :class:`SubmissionSession`.

    Busy sessions are never evicted, so the map can exceed ``max_sessions``
    while that many runs are in flight.
    """

    def __init__(self, pipeline: ImageSubmissionPipeline, max_sessions: int = 1000) -> None:
        self.pipeline = pipeline
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, SubmissionSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> SubmissionSession | None:
        """Return the user's session if one exists, without creating it."""
        return self._sessions.get(user_id)

    def get_or_create(self, user_id: str) -> SubmissionSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = SubmissionSession(user_id, self.pipeline)
            self._sessions[user_id] = session
        self._sessions.move_to_end(user_id)
        self._evict()
        return session

    def clear(self) -> None:
        self._sessions.clear()

    def _evict(self) -> None:
        overflow = len(self._sessions) - self.max_sessions
        if overflow <= 0:
            return
        # Oldest first; the entry just touched sits at the end.
        for user_id in list(self._sessions)[:-1]:
            if overflow <= 0:
                break
            if self._sessions[user_id].busy:
                continue
            del self._sessions[user_id]
            overflow -= 1
            logger.debug(f"Evicted idle session for {user_id}")
