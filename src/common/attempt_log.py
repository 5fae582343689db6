# ABOUTME: Append-only attempt log keyed by idempotency key.
# ABOUTME: Tracks each attempt's terminal outcome so retries return the committed result.

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .schemas import Attempt, AttemptResult, AttemptState


@dataclass(frozen=True)
class AttemptRecord:
    """Log entry for one idempotency key.

    ``attempt`` is None only for submissions rejected before an attempt could
    be built (unknown student or item).
    """

    idempotency_key: str
    state: AttemptState
    attempt: Optional[Attempt] = None
    result: Optional[AttemptResult] = None
    rejection_reason: Optional[str] = None
    # pipeline states the attempt passed through, set once it is terminal
    states: Tuple[AttemptState, ...] = ()


class AttemptLog:
    """Thread-safe in-memory append-only log.

    Attempts are never mutated; only the outcome attached to a key moves from
    ``received`` to ``committed``. Rejections are terminal.
    """

    def __init__(self) -> None:
        self._records: Dict[str, AttemptRecord] = {}
        self._lock = threading.Lock()

    def get(self, idempotency_key: str) -> Optional[AttemptRecord]:
        with self._lock:
            return self._records.get(idempotency_key)

    def append(self, attempt: Attempt) -> AttemptRecord:
        with self._lock:
            if attempt.idempotency_key in self._records:
                raise KeyError(f"Idempotency key already logged: {attempt.idempotency_key}")
            record = AttemptRecord(attempt.idempotency_key, AttemptState.RECEIVED, attempt=attempt)
            self._records[attempt.idempotency_key] = record
            return record

    def mark_committed(
        self, idempotency_key: str, result: AttemptResult, states: Tuple[AttemptState, ...] = ()
    ) -> AttemptRecord:
        with self._lock:
            current = self._records[idempotency_key]
            record = AttemptRecord(
                idempotency_key, AttemptState.COMMITTED, attempt=current.attempt, result=result, states=tuple(states)
            )
            self._records[idempotency_key] = record
            return record

    def mark_rejected(
        self,
        idempotency_key: str,
        reason: str,
        attempt: Optional[Attempt] = None,
        states: Tuple[AttemptState, ...] = (),
    ) -> AttemptRecord:
        with self._lock:
            if idempotency_key in self._records:
                return self._records[idempotency_key]
            record = AttemptRecord(
                idempotency_key, AttemptState.REJECTED, attempt=attempt, rejection_reason=reason, states=tuple(states)
            )
            self._records[idempotency_key] = record
            return record

    def attempts_for_student(self, student_id: str) -> List[Attempt]:
        """Every non-rejected attempt of one student, in server-timestamp order."""

        with self._lock:
            attempts = [
                r.attempt
                for r in self._records.values()
                if r.attempt is not None and r.state != AttemptState.REJECTED and r.attempt.student_id == student_id
            ]
        return sorted(attempts, key=lambda a: a.server_timestamp)

    def all_attempts(self) -> List[Attempt]:
        with self._lock:
            attempts = [
                r.attempt for r in self._records.values() if r.attempt is not None and r.state != AttemptState.REJECTED
            ]
        return sorted(attempts, key=lambda a: a.server_timestamp)

    def to_frame(self) -> pd.DataFrame:
        """Snapshot the log as a dataframe for batch consumers."""

        rows = [
            {
                "student_id": a.student_id,
                "item_id": a.item_id,
                "skill_id": a.skill_id,
                "correctness": a.correctness,
                "response_time": a.response_time,
                "server_timestamp": a.server_timestamp,
                "idempotency_key": a.idempotency_key,
            }
            for a in self.all_attempts()
        ]
        columns = [
            "student_id",
            "item_id",
            "skill_id",
            "correctness",
            "response_time",
            "server_timestamp",
            "idempotency_key",
        ]
        if not rows:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(rows, columns=columns)
