# ABOUTME: Validates the skill prerequisite graph as a DAG at load time.
# ABOUTME: Gives the selector read-only prerequisite lookups and a stable topological order.

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from .errors import SkillGraphError
from .schemas import Skill


class SkillGraph:
    """Immutable prerequisite graph. Cycles and dangling references fail at construction."""

    def __init__(self, skills: Iterable[Skill]):
        self._skills: Dict[str, Skill] = {}
        for skill in skills:
            if skill.skill_id in self._skills:
                raise SkillGraphError(f"Duplicate skill id '{skill.skill_id}'")
            self._skills[skill.skill_id] = skill

        for skill in self._skills.values():
            for prereq in skill.prerequisites:
                if prereq == skill.skill_id:
                    raise SkillGraphError(f"Skill '{skill.skill_id}' lists itself as a prerequisite")
                if prereq not in self._skills:
                    raise SkillGraphError(
                        f"Skill '{skill.skill_id}' references unknown prerequisite '{prereq}'"
                    )
        self._order = self._topological_order()

    def __contains__(self, skill_id: str) -> bool:
        return skill_id in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    def skill(self, skill_id: str) -> Skill:
        return self._skills[skill_id]

    def skill_ids(self) -> List[str]:
        return list(self._order)

    def prerequisites(self, skill_id: str) -> Tuple[str, ...]:
        skill = self._skills.get(skill_id)
        return skill.prerequisites if skill else ()

    def _topological_order(self) -> List[str]:
        # Kahn's algorithm with sorted frontiers so the order is reproducible.
        indegree = {sid: len(set(s.prerequisites)) for sid, s in self._skills.items()}
        dependants: Dict[str, List[str]] = {sid: [] for sid in self._skills}
        for sid, skill in self._skills.items():
            for prereq in set(skill.prerequisites):
                dependants[prereq].append(sid)

        frontier = sorted(sid for sid, deg in indegree.items() if deg == 0)
        order: List[str] = []
        while frontier:
            current = frontier.pop(0)
            order.append(current)
            for child in sorted(dependants[current]):
                indegree[child] -= 1
                if indegree[child] == 0:
                    frontier.append(child)
            frontier.sort()

        if len(order) != len(self._skills):
            cyclic = sorted(sid for sid, deg in indegree.items() if deg > 0)
            raise SkillGraphError(f"Prerequisite cycle detected among skills: {cyclic}")
        return order
