import logging
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .database import SessionLocal
from .domain import (
    GROUP_ACTIVE,
    MATCH_ACCEPTED,
    MATCH_PENDING,
    Group,
    MatchCandidate,
    Member,
    StoredMatch,
    normalize_gender,
)

logger = logging.getLogger(__name__)

ELIGIBLE_FROM_ACCEPTED_MATCHES = "accepted_matches"
ELIGIBLE_FROM_ACTIVE_MEMBERS = "active_members"


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _member_from_row(row: Any) -> Member:
    return Member(member_id=str(row["id"]), gender=normalize_gender(row.get("gender")), city=row.get("city"))


def _group_from_row(row: Any) -> Group:
    return Group(
        id=str(row["id"]),
        name=str(row["name"]),
        match_week=_as_date(row["match_week"]),
        group_type=str(row["group_type"]),
        gender_composition=str(row["gender_composition"]),
        status=str(row["status"]),
        capacity=int(row["capacity"]),
    )


class PipelineRepo:
    """SQL-backed member directory, match store and group store.

    Every operation opens its own session and commits on its own, so a failed
    write never takes earlier writes down with it.
    """

    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    # -- member directory -------------------------------------------------

    def list_active_members(self) -> list[Member]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT id, gender, city
                    FROM member_profile
                    WHERE status = 'active'
                    ORDER BY id
                    """
                )
            ).mappings().all()
        return [_member_from_row(r) for r in rows]

    def list_eligible_members(self, match_week: date, source: str = ELIGIBLE_FROM_ACCEPTED_MATCHES) -> list[Member]:
        if source == ELIGIBLE_FROM_ACTIVE_MEMBERS:
            return self.list_active_members()
        if source != ELIGIBLE_FROM_ACCEPTED_MATCHES:
            raise ValueError(f"Unknown eligibility source: {source}")
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT DISTINCT mp.id, mp.gender, mp.city
                    FROM member_profile mp
                    JOIN match_record mr
                      ON mr.subject_id = mp.id OR mr.object_id = mp.id
                    WHERE mp.status = 'active'
                      AND mr.status = :accepted
                    ORDER BY mp.id
                    """
                ),
                {"accepted": MATCH_ACCEPTED},
            ).mappings().all()
        return [_member_from_row(r) for r in rows]

    # -- match store ------------------------------------------------------

    def find_existing_match(self, member_a: str, member_b: str) -> StoredMatch | None:
        with self._session_factory() as db:
            row = db.execute(
                text(
                    """
                    SELECT id, subject_id, object_id, compatibility_score, status, created_at
                    FROM match_record
                    WHERE (subject_id = :a AND object_id = :b)
                       OR (subject_id = :b AND object_id = :a)
                    LIMIT 1
                    """
                ),
                {"a": member_a, "b": member_b},
            ).mappings().first()
        if not row:
            return None
        return StoredMatch(
            id=str(row["id"]),
            subject_id=str(row["subject_id"]),
            object_id=str(row["object_id"]),
            compatibility_score=float(row["compatibility_score"]),
            status=str(row["status"]),
            created_at=row.get("created_at"),
        )

    def insert_matches(self, matches: list[MatchCandidate]) -> int:
        if not matches:
            return 0
        params = [
            {
                "id": str(uuid.uuid4()),
                "subject_id": m.subject_id,
                "object_id": m.object_id,
                "compatibility_score": float(m.compatibility_score),
                "status": m.status or MATCH_PENDING,
            }
            for m in matches
        ]
        with self._session_factory() as db:
            db.execute(
                text(
                    """
                    INSERT INTO match_record (id, subject_id, object_id, compatibility_score, status)
                    VALUES (:id, :subject_id, :object_id, :compatibility_score, :status)
                    """
                ),
                params,
            )
            db.commit()
        return len(params)

    def promote_top_matches(self, min_score: float, limit: int) -> int:
        with self._session_factory() as db:
            res = db.execute(
                text(
                    """
                    UPDATE match_record
                    SET status = :accepted
                    WHERE id IN (
                      SELECT id
                      FROM match_record
                      WHERE status = :pending
                        AND compatibility_score >= :min_score
                      ORDER BY compatibility_score DESC, created_at ASC
                      LIMIT :limit
                    )
                    """
                ),
                {"accepted": MATCH_ACCEPTED, "pending": MATCH_PENDING, "min_score": float(min_score), "limit": int(limit)},
            )
            promoted = int(res.rowcount or 0)
            db.commit()
        return promoted

    # -- group store ------------------------------------------------------

    def list_active_groups_for_week(
        self,
        match_week: date,
        group_type: str | None = None,
        gender_composition: str | None = None,
    ) -> list[Group]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT id, name, match_week, group_type, gender_composition, status, capacity
                    FROM match_group
                    WHERE match_week = :match_week
                      AND status = :active
                      AND (:group_type IS NULL OR group_type = :group_type)
                      AND (:gender_composition IS NULL OR gender_composition = :gender_composition)
                    ORDER BY created_at ASC, id ASC
                    """
                ),
                {
                    "match_week": match_week.isoformat(),
                    "active": GROUP_ACTIVE,
                    "group_type": group_type,
                    "gender_composition": gender_composition,
                },
            ).mappings().all()
        return [_group_from_row(r) for r in rows]

    def count_group_members(self, group_id: str) -> int:
        with self._session_factory() as db:
            row = db.execute(
                text("SELECT COUNT(1) AS c FROM group_member WHERE group_id = :group_id"),
                {"group_id": group_id},
            ).mappings().first()
        return int((row or {}).get("c") or 0)

    def count_groups_for_week(self, match_week: date) -> int:
        with self._session_factory() as db:
            row = db.execute(
                text("SELECT COUNT(1) AS c FROM match_group WHERE match_week = :match_week"),
                {"match_week": match_week.isoformat()},
            ).mappings().first()
        return int((row or {}).get("c") or 0)

    def create_group(self, match_week: date, group_type: str, gender_composition: str, name: str, capacity: int = 5) -> Group:
        group = Group(
            id=str(uuid.uuid4()),
            name=name,
            match_week=match_week,
            group_type=group_type,
            gender_composition=gender_composition,
            status=GROUP_ACTIVE,
            capacity=capacity,
        )
        with self._session_factory() as db:
            db.execute(
                text(
                    """
                    INSERT INTO match_group (id, name, match_week, group_type, gender_composition, status, capacity)
                    VALUES (:id, :name, :match_week, :group_type, :gender_composition, :status, :capacity)
                    """
                ),
                {
                    "id": group.id,
                    "name": group.name,
                    "match_week": match_week.isoformat(),
                    "group_type": group.group_type,
                    "gender_composition": group.gender_composition,
                    "status": group.status,
                    "capacity": group.capacity,
                },
            )
            db.commit()
        return group

    def add_group_member(self, group_id: str, member_id: str) -> bool:
        try:
            with self._session_factory() as db:
                db.execute(
                    text(
                        """
                        INSERT INTO group_member (id, group_id, member_id)
                        VALUES (:id, :group_id, :member_id)
                        """
                    ),
                    {"id": str(uuid.uuid4()), "group_id": group_id, "member_id": member_id},
                )
                db.commit()
        except IntegrityError:
            logger.info("[grouping] membership already exists group_id=%s member_id=%s", group_id, member_id)
            return False
        return True

    def list_grouped_member_ids(self, match_week: date) -> set[str]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT gm.member_id
                    FROM group_member gm
                    JOIN match_group g ON g.id = gm.group_id
                    WHERE g.match_week = :match_week
                      AND g.status = :active
                    """
                ),
                {"match_week": match_week.isoformat(), "active": GROUP_ACTIVE},
            ).mappings().all()
        return {str(r["member_id"]) for r in rows}

    def week_summary(self, match_week: date) -> dict[str, Any]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT g.id, g.name, g.group_type, g.gender_composition, g.status, g.capacity,
                           COUNT(gm.id) AS member_count
                    FROM match_group g
                    LEFT JOIN group_member gm ON gm.group_id = g.id
                    WHERE g.match_week = :match_week
                    GROUP BY g.id, g.name, g.group_type, g.gender_composition, g.status, g.capacity, g.created_at
                    ORDER BY g.created_at ASC, g.id ASC
                    """
                ),
                {"match_week": match_week.isoformat()},
            ).mappings().all()

        type_counts: dict[str, int] = {}
        composition_counts: dict[str, int] = {}
        groups: list[dict[str, Any]] = []
        for row in rows:
            if row["status"] == GROUP_ACTIVE:
                type_counts[row["group_type"]] = type_counts.get(row["group_type"], 0) + 1
                composition_counts[row["gender_composition"]] = composition_counts.get(row["gender_composition"], 0) + 1
            groups.append({**dict(row), "member_count": int(row["member_count"] or 0)})
        return {
            "match_week": match_week.isoformat(),
            "total_groups": len(groups),
            "total_members": sum(g["member_count"] for g in groups if g["status"] == GROUP_ACTIVE),
            "group_type_counts": type_counts,
            "composition_counts": composition_counts,
            "groups": groups,
        }
