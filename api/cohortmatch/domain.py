from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

GENDER_FEMALE = "female"
GENDER_MALE = "male"

MATCH_PENDING = "pending"
MATCH_ACCEPTED = "accepted"
MATCH_REJECTED = "rejected"

GROUP_SAME_GENDER = "same_gender"
GROUP_MIXED = "mixed"

COMPOSITION_ALL_FEMALE = "all_female"
COMPOSITION_ALL_MALE = "all_male"
COMPOSITION_2F_3M = "ratio_2f_3m"
COMPOSITION_3F_2M = "ratio_3f_2m"
MIXED_COMPOSITIONS = (COMPOSITION_2F_3M, COMPOSITION_3F_2M)

GROUP_ACTIVE = "active"
GROUP_CLOSED = "closed"

# hard ceiling on members per group
MAX_GROUP_CAPACITY = 5


def normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def same_gender_composition(gender: str | None) -> str:
    return COMPOSITION_ALL_FEMALE if normalize_gender(gender) == GENDER_FEMALE else COMPOSITION_ALL_MALE


@dataclass(frozen=True)
class Member:
    member_id: str
    gender: str | None = None
    city: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class MatchCandidate:
    subject_id: str
    object_id: str
    compatibility_score: float
    status: str = MATCH_PENDING


@dataclass
class StoredMatch:
    id: str
    subject_id: str
    object_id: str
    compatibility_score: float
    status: str
    created_at: datetime | None = None


@dataclass
class Group:
    id: str
    name: str
    match_week: date
    group_type: str
    gender_composition: str
    status: str = GROUP_ACTIVE
    capacity: int = MAX_GROUP_CAPACITY
