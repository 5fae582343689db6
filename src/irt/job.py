# ABOUTME: Periodic calibration batch job over the attempt log and a mastery snapshot.
# ABOUTME: Writes item parameters under per-item locks and never touches mastery locks.

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Set

from src.common.attempt_log import AttemptLog
from src.common.config import CalibrationConfig
from src.common.content import ItemCatalog
from src.common.events import MasteryChangedEvent
from src.common.mastery_aggregation import aggregate_item_responses, calibration_states, profiles_to_frame
from src.common.store import MasteryProfileStore

from .calibrate import CalibrationOutcome, recalibrate

logger = logging.getLogger(__name__)


class CalibrationJob:
    """
    Rebuilds CalibrationState for items and refits their 2PL parameters.

    Subscribe ``on_mastery_changed`` to the event bus to track which items saw
    new responses; ``run_once(only_dirty=True)`` then refits just those.
    """

    def __init__(
        self,
        catalog: ItemCatalog,
        attempt_log: AttemptLog,
        store: MasteryProfileStore,
        config: CalibrationConfig,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.catalog = catalog
        self.attempt_log = attempt_log
        self.store = store
        self.config = config
        self._now = now
        self._dirty: Set[str] = set()
        self._dirty_lock = threading.Lock()

    def on_mastery_changed(self, event: MasteryChangedEvent) -> None:
        if event.item_id:
            with self._dirty_lock:
                self._dirty.add(event.item_id)

    @property
    def dirty_items(self) -> Set[str]:
        with self._dirty_lock:
            return set(self._dirty)

    def run_once(self, item_ids: Optional[Iterable[str]] = None, only_dirty: bool = False) -> List[CalibrationOutcome]:
        """Refit the requested items (default: every item) from one consistent snapshot."""

        with self._dirty_lock:
            dirty = set(self._dirty)
            if only_dirty:
                self._dirty.clear()
        if item_ids is not None:
            targets = sorted(set(item_ids))
        elif only_dirty:
            targets = sorted(dirty)
        else:
            targets = self.catalog.item_ids()

        attempts_df = self.attempt_log.to_frame()
        mastery_df = profiles_to_frame(self.store.snapshot())
        responses_df = aggregate_item_responses(
            attempts_df,
            mastery_df,
            bucket_width=self.config.ability_bucket_width,
            mastery_clip=self.config.mastery_clip,
        )
        states = calibration_states(responses_df)
        exposure = attempts_df["item_id"].value_counts().to_dict() if not attempts_df.empty else {}

        calibrated_at = self._now()
        outcomes: List[CalibrationOutcome] = []
        for item_id in targets:
            item = self.catalog.get_item(item_id)
            if item is None:
                logger.warning("Skipping calibration for unknown item %s", item_id)
                continue
            outcome = recalibrate(item, states.get(item_id), self.config)
            self.catalog.update_parameters(
                item_id,
                difficulty=outcome.difficulty,
                discrimination=outcome.discrimination,
                exposure_count=int(exposure.get(item_id, 0)),
                calibration_low_confidence=outcome.low_confidence,
                calibrated_at=calibrated_at,
            )
            outcomes.append(outcome)

        flagged = sum(1 for o in outcomes if o.low_confidence)
        logger.info("Calibrated %d items (%d flagged low-confidence)", len(outcomes), flagged)
        return outcomes
