import random
from collections import Counter
from datetime import date

import pytest
from fakes import InMemoryStore, female, male

from cohortmatch.domain import (
    COMPOSITION_2F_3M,
    COMPOSITION_3F_2M,
    COMPOSITION_ALL_FEMALE,
    GROUP_CLOSED,
    GROUP_MIXED,
    GROUP_SAME_GENDER,
)
from cohortmatch.services.grouping import choose_composition, choose_new_group_type, form_groups

WEEK = date(2026, 10, 15)
NEXT_WEEK = date(2026, 10, 22)


class _FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


def _assert_invariants(store, week):
    groups = store.list_active_groups_for_week(week)
    for g in groups:
        assert store.count_group_members(g.id) <= 5
    per_member = Counter(mid for gid, mid in store.memberships if gid in {g.id for g in groups})
    assert all(c == 1 for c in per_member.values())
    genders = {m.member_id: m.gender for m in store.members}
    for g in groups:
        if g.group_type == GROUP_SAME_GENDER:
            expected = "all_female" if g.gender_composition == COMPOSITION_ALL_FEMALE else "all_male"
            for mid in store.members_of(g.id):
                assert ("all_" + genders[mid]) == expected


def test_three_women_share_one_all_female_group():
    members = [female("f1"), female("f2"), female("f3")]
    store = InMemoryStore(members)

    result = form_groups(store, members, WEEK, rng=random.Random(7))

    assert result.assigned == 3
    assert result.groups_created == 1
    assert len(store.groups) == 1
    group = store.groups[0]
    assert group.group_type == GROUP_SAME_GENDER
    assert group.gender_composition == COMPOSITION_ALL_FEMALE
    assert group.match_week == WEEK
    assert sorted(store.members_of(group.id)) == ["f1", "f2", "f3"]


@pytest.mark.parametrize("seed", range(12))
def test_four_women_two_men_are_all_placed_within_capacity(seed):
    members = [female("f1"), female("f2"), female("f3"), female("f4"), male("m1"), male("m2")]
    store = InMemoryStore(members)

    result = form_groups(store, members, WEEK, rng=random.Random(seed))

    assert result.eligible == 6
    assert result.assigned == 6
    assert result.failed == 0
    _assert_invariants(store, WEEK)


def test_full_groups_spill_into_new_groups_with_balanced_types():
    members = [female(f"f{i:02d}") for i in range(12)]
    store = InMemoryStore(members)

    result = form_groups(store, members, WEEK, rng=random.Random(3))

    assert result.assigned == 12
    sizes = sorted(store.count_group_members(g.id) for g in store.groups)
    assert sizes == [2, 5, 5]
    assert result.group_type_counts == {GROUP_SAME_GENDER: 2, GROUP_MIXED: 1}
    _assert_invariants(store, WEEK)


def test_same_gender_group_is_preferred_over_mixed_with_room():
    store = InMemoryStore([male("m1"), female("f1")])
    mixed = store.create_group(WEEK, GROUP_MIXED, COMPOSITION_2F_3M, name="Group 1")
    same = store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 2")

    form_groups(store, [female("f1")], WEEK, rng=random.Random(1))

    assert store.members_of(same.id) == ["f1"]
    assert store.members_of(mixed.id) == []


def test_member_without_matching_same_gender_group_joins_mixed():
    store = InMemoryStore([male("m1")])
    store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 1")
    mixed = store.create_group(WEEK, GROUP_MIXED, COMPOSITION_3F_2M, name="Group 2")

    result = form_groups(store, [male("m1")], WEEK, rng=random.Random(1))

    assert result.groups_created == 0
    assert store.members_of(mixed.id) == ["m1"]


def test_new_group_type_tie_goes_to_same_gender():
    assert choose_new_group_type(0, 0) == GROUP_SAME_GENDER
    assert choose_new_group_type(2, 2) == GROUP_SAME_GENDER
    assert choose_new_group_type(1, 0) == GROUP_MIXED
    assert choose_new_group_type(1, 3) == GROUP_SAME_GENDER


def test_mixed_composition_is_an_even_draw():
    assert choose_composition(GROUP_MIXED, "female", _FixedRandom(0.1)) == COMPOSITION_2F_3M
    assert choose_composition(GROUP_MIXED, "female", _FixedRandom(0.9)) == COMPOSITION_3F_2M
    assert choose_composition(GROUP_SAME_GENDER, "male", _FixedRandom(0.1)) == "all_male"


def test_same_seed_gives_same_allocation():
    members = [female("f1"), female("f2"), male("m1"), male("m2"), female("f3"), male("m3"), female("f4")]

    def allocate(seed):
        store = InMemoryStore(members)
        form_groups(store, members, WEEK, rng=random.Random(seed))
        return {m.member_id: store.group_of(m.member_id, WEEK).name for m in members}

    assert allocate(42) == allocate(42)


def test_failed_membership_insert_leaves_member_for_next_run():
    class RejectingStore(InMemoryStore):
        reject = {"f2"}

        def add_group_member(self, group_id, member_id):
            if member_id in self.reject:
                return False
            return super().add_group_member(group_id, member_id)

    members = [female("f1"), female("f2"), female("f3")]
    store = RejectingStore(members)

    result = form_groups(store, members, WEEK, rng=random.Random(5))

    assert result.assigned == 2
    assert result.failed == 1
    assert store.group_of("f2", WEEK) is None

    store.reject = set()
    rerun = form_groups(store, members, WEEK, rng=random.Random(5))
    assert rerun.already_grouped == 2
    assert rerun.assigned == 1
    assert store.group_of("f2", WEEK) is not None
    _assert_invariants(store, WEEK)


def test_exception_for_one_member_does_not_abort_the_pass():
    class FlakyCountStore(InMemoryStore):
        def count_group_members(self, group_id):
            if getattr(self, "_boom", False):
                self._boom = False
                raise RuntimeError("count failed")
            return super().count_group_members(group_id)

    members = [female("f1"), female("f2"), female("f3")]
    store = FlakyCountStore(members)
    store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 1")
    store._boom = True

    result = form_groups(store, members, WEEK, rng=random.Random(2))

    assert result.failed == 1
    assert result.assigned == 2


def test_rerun_in_same_week_adds_no_memberships():
    members = [female("f1"), male("m1"), female("f2")]
    store = InMemoryStore(members)
    form_groups(store, members, WEEK, rng=random.Random(9))
    before = list(store.memberships)

    result = form_groups(store, members, WEEK, rng=random.Random(10))

    assert result.already_grouped == 3
    assert result.assigned == 0
    assert result.groups_created == 0
    assert store.memberships == before


def test_new_week_starts_a_fresh_allocation():
    members = [female("f1"), female("f2")]
    store = InMemoryStore(members)
    form_groups(store, members, WEEK, rng=random.Random(1))

    result = form_groups(store, members, NEXT_WEEK, rng=random.Random(1))

    assert result.assigned == 2
    assert result.groups_created == 1
    assert {g.match_week for g in store.groups} == {WEEK, NEXT_WEEK}


def test_closed_groups_are_ignored():
    store = InMemoryStore([female("f1")])
    closed = store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 1")
    closed.status = GROUP_CLOSED

    form_groups(store, [female("f1")], WEEK, rng=random.Random(1))

    assert store.members_of(closed.id) == []
    assert store.group_of("f1", WEEK).id != closed.id


def test_duplicate_members_in_input_are_placed_once():
    store = InMemoryStore([female("f1")])
    result = form_groups(store, [female("f1"), female("f1")], WEEK, rng=random.Random(1))
    assert result.eligible == 1
    assert store.memberships and len(store.memberships) == 1


def test_empty_input_creates_no_groups():
    store = InMemoryStore()
    result = form_groups(store, [], WEEK)
    assert result.assigned == 0
    assert store.groups == []


def test_stored_group_capacity_is_respected_over_a_larger_run_setting():
    members = [female(f"f{i}") for i in range(8)]
    store = InMemoryStore(members)
    existing = store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 1", capacity=5)

    result = form_groups(store, members, WEEK, capacity=8, rng=random.Random(1))

    assert result.assigned == 8
    assert store.count_group_members(existing.id) == 5
    assert all(store.count_group_members(g.id) <= 5 for g in store.groups)
    assert all(g.capacity <= 5 for g in store.groups)


def test_smaller_stored_capacity_fills_up_first():
    members = [female(f"f{i}") for i in range(4)]
    store = InMemoryStore(members)
    small = store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 1", capacity=3)

    form_groups(store, members, WEEK, rng=random.Random(2))

    assert store.count_group_members(small.id) == 3
    assert len(store.groups) == 2


def test_group_numbers_continue_past_closed_groups():
    store = InMemoryStore([male("m1")])
    closed = store.create_group(WEEK, GROUP_SAME_GENDER, COMPOSITION_ALL_FEMALE, name="Group 1")
    closed.status = GROUP_CLOSED

    form_groups(store, [male("m1")], WEEK, rng=random.Random(1))

    assert store.group_of("m1", WEEK).name == "Group 2"
    assert sorted(g.name for g in store.groups) == ["Group 1", "Group 2"]
