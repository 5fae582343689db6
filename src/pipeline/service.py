# ABOUTME: Attempt update pipeline and the mastery service facade exposed to collaborators.
# ABOUTME: Validates, scores, traces, fuses, commits, and replays attempts with per-key ordering.

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from src.bkt.tracer import BayesianTracer, predict_correct
from src.common.attempt_log import AttemptLog
from src.common.config import EngineConfig
from src.common.content import AnswerKeyScorer, ContentService, ItemCatalog, Scorer, StudentDirectory
from src.common.errors import DegradedModeWarning, ValidationError
from src.common.events import EventBus, MasteryChangedEvent
from src.common.fusion import FusionPolicy, MasteryEstimate, MasteryEstimator
from src.common.schemas import Attempt, AttemptResult, AttemptState, HistoryEntry, MasteryProfile
from src.common.selector import AdaptiveSelector
from src.common.skill_graph import SkillGraph
from src.common.store import ExposureLog, InMemoryMasteryStore, MasteryProfileStore
from src.seq_kt.tracer import SequenceTracer

from .clock import MonotonicClock
from .sequencer import KeyedSequencer

logger = logging.getLogger(__name__)

PREDICTION_COLUMNS = [
    "student_id",
    "skill_id",
    "item_id",
    "server_timestamp",
    "mastery_before",
    "y_pred",
    "y_true",
]


@dataclass
class PipelineTrace:
    """States one attempt passed through, in order."""

    idempotency_key: str
    states: List[AttemptState] = field(default_factory=list)

    def record(self, state: AttemptState) -> None:
        self.states.append(state)

    @property
    def terminal(self) -> Optional[AttemptState]:
        if self.states and self.states[-1] in (AttemptState.COMMITTED, AttemptState.REJECTED):
            return self.states[-1]
        return None


@dataclass(frozen=True)
class ReplayStep:
    attempt: Attempt
    before: MasteryProfile
    after: MasteryProfile


class MasteryService:
    """
    Entry point for the real-time mastery engine.

    ``submit_attempt`` walks Received -> Validated -> Scored -> MasteryUpdated
    -> Committed. Profile reads and writes for one (student, skill) happen
    inside that key's sequencer turn; the sequence tracer runs in the default
    executor under ``inference_timeout_s`` and falls back to BKT-only fusion
    when it is exceeded.
    """

    def __init__(
        self,
        content: ContentService,
        students: StudentDirectory,
        store: MasteryProfileStore,
        attempt_log: AttemptLog,
        bkt: BayesianTracer,
        fusion: FusionPolicy,
        selector: AdaptiveSelector,
        sequence_tracer: Optional[MasteryEstimator] = None,
        inference_timeout_s: float = 0.25,
        events: Optional[EventBus] = None,
        scorer: Optional[Scorer] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self.content = content
        self.students = students
        self.store = store
        self.attempt_log = attempt_log
        self.bkt = bkt
        self.fusion = fusion
        self.selector = selector
        self.sequence_tracer = sequence_tracer
        self.inference_timeout_s = inference_timeout_s
        self.events = events or EventBus()
        self.scorer = scorer or AnswerKeyScorer()
        self.clock = clock or MonotonicClock()
        self.sequencer = KeyedSequencer()
        # non-terminal attempts only; finished traces live on the attempt log
        self._traces: Dict[str, PipelineTrace] = {}
        self._inflight: Dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------
    async def next_item(self, student_id: str, skill_candidates: Optional[Iterable[str]] = None) -> str:
        if not self.students.exists(student_id):
            raise ValidationError(f"Unknown student '{student_id}'")
        return await self.selector.select_next(student_id, skill_candidates)

    async def submit_attempt(
        self,
        student_id: str,
        item_id: str,
        response: Any,
        client_time: Optional[datetime] = None,
        idempotency_key: str = "",
        response_time: Optional[float] = None,
    ) -> AttemptResult:
        if not idempotency_key:
            raise ValidationError("Missing idempotency key")

        while True:
            record = self.attempt_log.get(idempotency_key)
            if record is None:
                break
            if record.state == AttemptState.COMMITTED:
                logger.info("Duplicate submission %s; returning committed result", idempotency_key)
                return record.result
            if record.state == AttemptState.REJECTED:
                raise ValidationError(record.rejection_reason or "Attempt was rejected", idempotency_key)
            inflight = self._inflight.get(idempotency_key)
            if inflight is None:
                logger.warning("Recovering uncommitted attempt %s", idempotency_key)
                return await self._process(record.attempt, self._trace_for(idempotency_key))
            await inflight.wait()

        trace = self._trace_for(idempotency_key)
        trace.record(AttemptState.RECEIVED)
        item = self._validate(student_id, item_id, idempotency_key, trace)
        correctness = self._score(item, response, idempotency_key, trace)

        # Timestamp, log append, and ticket registration happen without yielding.
        attempt = Attempt(
            student_id=student_id,
            item_id=item_id,
            skill_id=item.skill_id,
            correctness=correctness,
            response_time=response_time,
            server_timestamp=self.clock.now(),
            idempotency_key=idempotency_key,
            client_time=client_time,
        )
        self.attempt_log.append(attempt)
        return await self._process(attempt, trace)

    async def get_profile(self, student_id: str) -> Dict[str, Dict[str, Any]]:
        profiles = await self.store.profiles_for_student(student_id)
        return {
            skill_id: {
                "probability_mastery": p.probability_mastery,
                "confidence": p.confidence,
                "last_update": p.last_update,
            }
            for skill_id, p in sorted(profiles.items())
        }

    async def recompute_mastery(self, student_id: str) -> Dict[str, MasteryProfile]:
        """
        Replay the student's attempt log and overwrite every profile it touches.

        Only attempts stamped before this call are folded in, and only the
        skills they touch are written; attempts arriving meanwhile go through
        the live pipeline after the recompute turn.
        """

        attempts = self.attempt_log.attempts_for_student(student_id)
        skills = sorted({a.skill_id for a in attempts})
        stamp = self.clock.now()
        tickets = [self.sequencer.register((student_id, skill_id), stamp) for skill_id in skills]
        acquired = []
        final: Dict[str, MasteryProfile] = {}
        try:
            for ticket in tickets:
                await self.sequencer.acquire(ticket)
                acquired.append(ticket)
            # Every attempt logged before ``stamp`` has now been applied or abandoned.
            logged = [a for a in self.attempt_log.attempts_for_student(student_id) if a.server_timestamp < stamp]
            for step in self.replay(logged):
                if step.after.skill_id in skills:
                    final[step.after.skill_id] = step.after
            for profile in final.values():
                await self.store.put(profile, overwrite=True)
        finally:
            for ticket in tickets:
                if ticket in acquired:
                    self.sequencer.release(ticket)
                else:
                    self.sequencer.cancel(ticket)
        logger.info("Recomputed %d profiles for %s from %d attempts", len(final), student_id, len(attempts))
        return final

    def replay_predictions(self, student_id: Optional[str] = None) -> pd.DataFrame:
        """Pre-attempt P(correct) for each logged attempt, for offline evaluation."""

        if student_id is None:
            student_ids = sorted({a.student_id for a in self.attempt_log.all_attempts()})
        else:
            student_ids = [student_id]

        rows = []
        for sid in student_ids:
            for step in self.replay(self.attempt_log.attempts_for_student(sid)):
                skill_id = step.attempt.skill_id
                rows.append(
                    {
                        "student_id": sid,
                        "skill_id": skill_id,
                        "item_id": step.attempt.item_id,
                        "server_timestamp": step.attempt.server_timestamp,
                        "mastery_before": step.before.probability_mastery,
                        "y_pred": predict_correct(step.before.probability_mastery, self.bkt.params_for(skill_id)),
                        "y_true": step.attempt.correctness,
                    }
                )
        if not rows:
            return pd.DataFrame(columns=PREDICTION_COLUMNS)
        return pd.DataFrame(rows, columns=PREDICTION_COLUMNS)

    def trace(self, idempotency_key: str) -> Optional[PipelineTrace]:
        """States of an in-flight attempt, or the final states kept on its log record."""

        live = self._traces.get(idempotency_key)
        if live is not None:
            return live
        record = self.attempt_log.get(idempotency_key)
        if record is None or not record.states:
            return None
        return PipelineTrace(idempotency_key, list(record.states))

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------
    def replay(self, attempts: Sequence[Attempt]) -> List[ReplayStep]:
        """Deterministically fold a single student's attempts (timestamp order) into profiles."""

        ordered = sorted(attempts, key=lambda a: a.server_timestamp)
        current: Dict[str, MasteryProfile] = {}
        steps: List[ReplayStep] = []
        for index, attempt in enumerate(ordered):
            before = current.get(attempt.skill_id) or self._initial_profile(attempt.student_id, attempt.skill_id)
            window = _window(ordered[: index + 1])
            estimate = self._estimate_sequence(window, attempt.skill_id, before.probability_mastery)
            after = self._next_profile(attempt, before, estimate)
            current[attempt.skill_id] = after
            steps.append(ReplayStep(attempt, before, after))
        return steps

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------
    def _validate(self, student_id: str, item_id: str, key: str, trace: PipelineTrace):
        if not self.students.exists(student_id):
            self._reject(key, f"Unknown student '{student_id}'", trace)
        item = self.content.get_item(item_id)
        if item is None:
            self._reject(key, f"Unknown item '{item_id}'", trace)
        if item.deprecated:
            self._reject(key, f"Item '{item_id}' is deprecated", trace)
        trace.record(AttemptState.VALIDATED)
        return item

    def _score(self, item, response: Any, key: str, trace: PipelineTrace) -> float:
        try:
            correctness = float(self.scorer.score(item, response))
        except ValidationError as exc:
            self._reject(key, str(exc), trace)
        if not 0.0 <= correctness <= 1.0:
            self._reject(key, f"Correctness {correctness} for item '{item.item_id}' outside [0, 1]", trace)
        trace.record(AttemptState.SCORED)
        return correctness

    def _reject(self, key: str, reason: str, trace: PipelineTrace) -> None:
        trace.record(AttemptState.REJECTED)
        self.attempt_log.mark_rejected(key, reason, states=trace.states)
        self._traces.pop(key, None)
        logger.info("Rejected attempt %s: %s", key, reason)
        raise ValidationError(reason, key)

    async def _process(self, attempt: Attempt, trace: PipelineTrace) -> AttemptResult:
        key = attempt.idempotency_key
        inflight = asyncio.Event()
        self._inflight[key] = inflight
        ticket = self.sequencer.register((attempt.student_id, attempt.skill_id), attempt.server_timestamp)
        try:
            async with self.sequencer.turn(ticket):
                return await self._apply(attempt, trace)
        finally:
            del self._inflight[key]
            inflight.set()

    async def _apply(self, attempt: Attempt, trace: PipelineTrace) -> AttemptResult:
        previous = await self.store.get(attempt.student_id, attempt.skill_id)
        if previous is not None and previous.last_update is not None:
            if previous.last_update >= attempt.server_timestamp:
                return await self._reconcile(attempt, previous, trace)

        before = previous or self._initial_profile(attempt.student_id, attempt.skill_id)
        window = _window(
            a for a in self.attempt_log.attempts_for_student(attempt.student_id)
            if a.server_timestamp <= attempt.server_timestamp
        )
        estimate, degraded = await self._estimate_sequence_bounded(window, attempt, before.probability_mastery)
        profile = self._next_profile(attempt, before, estimate)
        trace.record(AttemptState.MASTERY_UPDATED)

        await self.store.put(profile)
        return self._commit(attempt, before.probability_mastery, profile, trace, degraded)

    async def _reconcile(self, attempt: Attempt, stored: MasteryProfile, trace: PipelineTrace) -> AttemptResult:
        """Finish an attempt whose profile write may already have landed before a crash."""

        steps = self.replay(self.attempt_log.attempts_for_student(attempt.student_id))
        mine = next(s for s in steps if s.attempt.idempotency_key == attempt.idempotency_key)
        if stored.last_update != attempt.server_timestamp:
            latest = [s.after for s in steps if s.attempt.skill_id == attempt.skill_id][-1]
            logger.warning(
                "Profile %s advanced past attempt %s; rebuilding from the attempt log",
                stored.key,
                attempt.idempotency_key,
            )
            await self.store.put(latest, overwrite=True)
        trace.record(AttemptState.MASTERY_UPDATED)
        return self._commit(attempt, mine.before.probability_mastery, mine.after, trace, degraded=False)

    def _commit(
        self,
        attempt: Attempt,
        old_probability: float,
        profile: MasteryProfile,
        trace: PipelineTrace,
        degraded: bool,
    ) -> AttemptResult:
        result = AttemptResult(
            idempotency_key=attempt.idempotency_key,
            student_id=attempt.student_id,
            item_id=attempt.item_id,
            skill_id=attempt.skill_id,
            correctness=attempt.correctness,
            updated_mastery=profile.probability_mastery,
            confidence=profile.confidence,
            server_timestamp=attempt.server_timestamp,
            degraded=degraded,
        )
        trace.record(AttemptState.COMMITTED)
        self.attempt_log.mark_committed(attempt.idempotency_key, result, states=trace.states)
        self._traces.pop(attempt.idempotency_key, None)
        self.events.publish(
            MasteryChangedEvent(
                student_id=attempt.student_id,
                skill_id=attempt.skill_id,
                old_probability=old_probability,
                new_probability=profile.probability_mastery,
                confidence=profile.confidence,
                timestamp=attempt.server_timestamp,
                item_id=attempt.item_id,
                idempotency_key=attempt.idempotency_key,
                degraded=degraded,
            )
        )
        return result

    # ------------------------------------------------------------------
    # Estimation helpers
    # ------------------------------------------------------------------
    async def _estimate_sequence_bounded(
        self, window: List[HistoryEntry], attempt: Attempt, prior: float
    ) -> Tuple[MasteryEstimate, bool]:
        if self.sequence_tracer is None:
            return MasteryEstimate(prior, 0.0), False
        loop = asyncio.get_running_loop()
        call = functools.partial(self._estimate_sequence, window, attempt.skill_id, prior)
        try:
            estimate = await asyncio.wait_for(loop.run_in_executor(None, call), self.inference_timeout_s)
        except asyncio.TimeoutError:
            warning = DegradedModeWarning(
                f"Sequence inference exceeded {self.inference_timeout_s:.3f}s for attempt "
                f"{attempt.idempotency_key}; using BKT-only fusion"
            )
            logger.warning("%s", warning)
            return MasteryEstimate(prior, 0.0), True
        return estimate, False

    def _estimate_sequence(self, window: Sequence[HistoryEntry], skill_id: str, prior: float) -> MasteryEstimate:
        if self.sequence_tracer is None:
            return MasteryEstimate(prior, 0.0)
        return self.sequence_tracer.estimate_mastery(window, skill_id, prior)

    def _next_profile(self, attempt: Attempt, before: MasteryProfile, estimate: MasteryEstimate) -> MasteryProfile:
        posterior = self.bkt.update(before.probability_mastery, attempt.correctness, attempt.skill_id)
        count = before.attempt_count + 1
        probability, confidence = self.fusion.fuse(posterior, estimate.probability, estimate.confidence, count)
        return MasteryProfile(
            student_id=attempt.student_id,
            skill_id=attempt.skill_id,
            probability_mastery=probability,
            confidence=confidence,
            last_update=attempt.server_timestamp,
            attempt_count=count,
        )

    def _initial_profile(self, student_id: str, skill_id: str) -> MasteryProfile:
        return MasteryProfile(student_id, skill_id, self.bkt.prior_for(skill_id), 0.0, None, 0)

    def _trace_for(self, key: str) -> PipelineTrace:
        return self._traces.setdefault(key, PipelineTrace(key))


def _window(attempts: Iterable[Attempt]) -> List[HistoryEntry]:
    return [HistoryEntry(a.skill_id, a.correctness, a.response_time) for a in attempts]


def build_service(
    config: EngineConfig,
    graph: SkillGraph,
    catalog: ItemCatalog,
    students: StudentDirectory,
    store: Optional[MasteryProfileStore] = None,
    sequence_tracer: Optional[MasteryEstimator] = None,
    use_sequence_model: bool = True,
    events: Optional[EventBus] = None,
    clock: Optional[MonotonicClock] = None,
) -> MasteryService:
    """Wire the engine from validated configuration and in-memory collaborators."""

    store = store or InMemoryMasteryStore()
    clock = clock or MonotonicClock()
    bkt = BayesianTracer(config.bkt, confidence_half_point=config.fusion.bkt_confidence_half_point)
    if sequence_tracer is None and use_sequence_model:
        sequence_tracer = SequenceTracer.from_config(config.sequence, graph.skill_ids())
    selector = AdaptiveSelector(
        graph,
        catalog,
        store,
        ExposureLog(),
        prior_for=bkt.prior_for,
        config=config.selector,
        mastery_clip=config.calibration.mastery_clip,
        now=clock.now,
    )
    return MasteryService(
        content=catalog,
        students=students,
        store=store,
        attempt_log=AttemptLog(),
        bkt=bkt,
        fusion=FusionPolicy(config.fusion.bkt_confidence_half_point),
        selector=selector,
        sequence_tracer=sequence_tracer,
        inference_timeout_s=config.sequence.inference_timeout_s,
        events=events,
        scorer=AnswerKeyScorer(),
        clock=clock,
    )
