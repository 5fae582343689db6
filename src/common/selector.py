# ABOUTME: Picks the next item for a student from current mastery and calibrated item difficulty.
# ABOUTME: Applies prerequisite floors, a mastery ceiling, 2PL success targeting, and recency tie-breaks.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from src.irt.model import ideal_difficulty, mastery_to_ability

from .config import SelectorConfig
from .content import ItemCatalog
from .errors import NoEligibleItemError
from .skill_graph import SkillGraph
from .store import ExposureLog, MasteryProfileStore

logger = logging.getLogger(__name__)

_NEVER_SHOWN = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ItemChoice:
    item_id: str
    skill_id: str
    mastery: float
    target_difficulty: float
    difficulty: float


class AdaptiveSelector:
    """
    Item selection over a mastery snapshot.

    Order of rules:
    - a skill is eligible only when every prerequisite is above ``prerequisite_floor``
    - skills at or above ``mastery_ceiling`` are skipped
    - remaining skills are tried from lowest mastery up (skill id breaks ties)
    - within a skill, the item whose difficulty is closest to the 2PL difficulty
      giving ``target_success`` wins; least-recently-shown then item id break ties
    """

    def __init__(
        self,
        graph: SkillGraph,
        catalog: ItemCatalog,
        store: MasteryProfileStore,
        exposure_log: ExposureLog,
        prior_for: Callable[[str], float],
        config: SelectorConfig = SelectorConfig(),
        mastery_clip: float = 0.01,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.graph = graph
        self.catalog = catalog
        self.store = store
        self.exposure_log = exposure_log
        self.prior_for = prior_for
        self.config = config
        self.mastery_clip = mastery_clip
        self._now = now

    async def select_next(self, student_id: str, skill_candidates: Optional[Iterable[str]] = None) -> str:
        """Choose an item, record its exposure, and return its id."""

        profiles = await self.store.profiles_for_student(student_id)
        mastery = {skill: p.probability_mastery for skill, p in profiles.items()}
        choice = self.choose(student_id, mastery, skill_candidates)
        self.exposure_log.record(student_id, choice.item_id, self._now())
        logger.debug(
            "Selected %s (skill=%s, b=%.3f, target=%.3f) for %s",
            choice.item_id,
            choice.skill_id,
            choice.difficulty,
            choice.target_difficulty,
            student_id,
        )
        return choice.item_id

    def choose(
        self,
        student_id: str,
        mastery: Mapping[str, float],
        skill_candidates: Optional[Iterable[str]] = None,
    ) -> ItemChoice:
        """Pure selection over a mastery mapping; raises NoEligibleItemError when nothing fits."""

        candidates = self.graph.skill_ids() if skill_candidates is None else list(skill_candidates)
        for skill_id in self.rank_skills(mastery, candidates):
            choice = self._choose_item(student_id, skill_id, self._mastery(mastery, skill_id))
            if choice is not None:
                return choice
            logger.debug("Skill %s has no eligible items for %s; falling back", skill_id, student_id)
        raise NoEligibleItemError(student_id)

    def rank_skills(self, mastery: Mapping[str, float], skill_candidates: Iterable[str]) -> List[str]:
        """Eligible, not-yet-mastered skills in priority order."""

        ranked: Dict[str, float] = {}
        for skill_id in skill_candidates:
            if skill_id not in self.graph:
                continue
            current = self._mastery(mastery, skill_id)
            if current >= self.config.mastery_ceiling:
                continue
            if not self.prerequisites_met(mastery, skill_id):
                continue
            ranked[skill_id] = current
        return sorted(ranked, key=lambda skill: (ranked[skill], skill))

    def prerequisites_met(self, mastery: Mapping[str, float], skill_id: str) -> bool:
        return all(
            self._mastery(mastery, prereq) > self.config.prerequisite_floor
            for prereq in self.graph.prerequisites(skill_id)
        )

    def _choose_item(self, student_id: str, skill_id: str, mastery: float) -> Optional[ItemChoice]:
        ability = mastery_to_ability(mastery, self.mastery_clip)
        best_key = None
        best: Optional[ItemChoice] = None
        for item_id in self.catalog.items_by_skill(skill_id):
            item = self.catalog.get_item(item_id)
            if item is None or item.deprecated:
                continue
            target = ideal_difficulty(ability, item.discrimination, self.config.target_success)
            shown = self.exposure_log.last_shown(student_id, item_id) or _NEVER_SHOWN
            key = (abs(item.difficulty - target), shown, item_id)
            if best_key is None or key < best_key:
                best_key = key
                best = ItemChoice(item_id, skill_id, mastery, target, item.difficulty)
        return best

    def _mastery(self, mastery: Mapping[str, float], skill_id: str) -> float:
        value = mastery.get(skill_id)
        return self.prior_for(skill_id) if value is None else value
