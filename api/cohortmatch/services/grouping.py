from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ..domain import (
    GROUP_MIXED,
    GROUP_SAME_GENDER,
    MAX_GROUP_CAPACITY,
    MIXED_COMPOSITIONS,
    Group,
    Member,
    same_gender_composition,
)

logger = logging.getLogger(__name__)


@dataclass
class GroupingResult:
    match_week: date
    eligible: int = 0
    already_grouped: int = 0
    assigned: int = 0
    failed: int = 0
    groups_created: int = 0
    group_type_counts: dict[str, int] = field(default_factory=dict)
    assignments: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "match_week": self.match_week.isoformat(),
            "eligible": self.eligible,
            "already_grouped": self.already_grouped,
            "assigned": self.assigned,
            "failed": self.failed,
            "groups_created": self.groups_created,
            "group_type_counts": dict(self.group_type_counts),
        }


def choose_new_group_type(same_gender_count: int, mixed_count: int) -> str:
    # ties go to same_gender
    return GROUP_SAME_GENDER if same_gender_count <= mixed_count else GROUP_MIXED


def choose_composition(group_type: str, gender: str | None, rng: random.Random) -> str:
    if group_type == GROUP_SAME_GENDER:
        return same_gender_composition(gender)
    return MIXED_COMPOSITIONS[0] if rng.random() < 0.5 else MIXED_COMPOSITIONS[1]


def group_limit(group: Group) -> int:
    """Seats in ``group``: its stored capacity, never above the hard ceiling."""
    stored = group.capacity if group.capacity else MAX_GROUP_CAPACITY
    return min(int(stored), MAX_GROUP_CAPACITY)


def _first_with_room(store: Any, groups: list[Group]) -> Group | None:
    for group in groups:
        if store.count_group_members(group.id) < group_limit(group):
            return group
    return None


def find_group_with_room(store: Any, member: Member, match_week: date) -> Group | None:
    """Same-gender group for the member's gender first, then any mixed group."""
    same = store.list_active_groups_for_week(
        match_week,
        group_type=GROUP_SAME_GENDER,
        gender_composition=same_gender_composition(member.gender),
    )
    group = _first_with_room(store, same)
    if group is not None:
        return group
    mixed = store.list_active_groups_for_week(match_week, group_type=GROUP_MIXED)
    return _first_with_room(store, mixed)


def create_group_for(store: Any, member: Member, match_week: date, capacity: int, rng: random.Random) -> Group:
    existing = store.list_active_groups_for_week(match_week)
    same_count = sum(1 for g in existing if g.group_type == GROUP_SAME_GENDER)
    mixed_count = sum(1 for g in existing if g.group_type == GROUP_MIXED)
    group_type = choose_new_group_type(same_count, mixed_count)
    composition = choose_composition(group_type, member.gender, rng)
    # numbered across every group of the week, closed ones included
    number = store.count_groups_for_week(match_week) + 1
    group = store.create_group(match_week, group_type, composition, name=f"Group {number}", capacity=capacity)
    logger.info(
        "[grouping] created %s (%s, %s) for week %s",
        group.name,
        group_type,
        composition,
        match_week.isoformat(),
    )
    return group


def form_groups(
    store: Any,
    members: list[Member],
    match_week: date,
    *,
    capacity: int = MAX_GROUP_CAPACITY,
    rng: random.Random | None = None,
    progress_every: int = 10,
) -> GroupingResult:
    """Greedily place every eligible member into one active group for ``match_week``.

    Runs strictly sequentially: each placement reads group sizes that the
    previous placement may just have changed.
    """
    if capacity > MAX_GROUP_CAPACITY:
        logger.warning("[grouping] capacity %s exceeds the limit of %s; using %s", capacity, MAX_GROUP_CAPACITY, MAX_GROUP_CAPACITY)
        capacity = MAX_GROUP_CAPACITY
    rng = rng or random.Random()
    unique: dict[str, Member] = {}
    for m in members:
        unique.setdefault(m.member_id, m)
    result = GroupingResult(match_week=match_week, eligible=len(unique))

    already_grouped = store.list_grouped_member_ids(match_week)
    assigned: set[str] = set(already_grouped) & set(unique)
    result.already_grouped = len(assigned)

    shuffled = list(unique.values())
    rng.shuffle(shuffled)
    total = len(shuffled)
    logger.info("[grouping] distributing %s member(s) into groups for week %s", total, match_week.isoformat())

    for idx, member in enumerate(shuffled, start=1):
        if progress_every > 0 and idx % progress_every == 0:
            logger.info("[grouping] progress %.1f%% (%s/%s members processed)", 100.0 * idx / total, idx, total)
        if member.member_id in assigned:
            continue
        try:
            target = find_group_with_room(store, member, match_week)
            if target is None:
                target = create_group_for(store, member, match_week, capacity, rng)
                result.groups_created += 1
            if not store.add_group_member(target.id, member.member_id):
                result.failed += 1
                logger.warning(
                    "[grouping] membership insert skipped for member_id=%s group_id=%s; retry on next run",
                    member.member_id,
                    target.id,
                )
                continue
        except Exception:
            result.failed += 1
            logger.exception("[grouping] failed to place member_id=%s; retry on next run", member.member_id)
            continue
        assigned.add(member.member_id)
        result.assignments[member.member_id] = target.id
        result.assigned += 1

    try:
        groups = store.list_active_groups_for_week(match_week)
        counts: dict[str, int] = {GROUP_SAME_GENDER: 0, GROUP_MIXED: 0}
        for g in groups:
            counts[g.group_type] = counts.get(g.group_type, 0) + 1
        result.group_type_counts = counts
    except Exception:
        logger.exception("[grouping] could not load group counts for week %s", match_week.isoformat())

    logger.info(
        "[grouping] done: placed %s/%s eligible member(s) (%s already grouped, %s failed); %s same_gender, %s mixed groups",
        result.assigned,
        result.eligible,
        result.already_grouped,
        result.failed,
        result.group_type_counts.get(GROUP_SAME_GENDER, 0),
        result.group_type_counts.get(GROUP_MIXED, 0),
    )
    return result
