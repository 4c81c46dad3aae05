import uuid

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint, func

from .database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class MemberProfile(Base):
    __tablename__ = "member_profile"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    gender = Column(String, nullable=True)
    city = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("idx_member_profile_status", "status"),)


class MatchRecord(Base):
    __tablename__ = "match_record"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    subject_id = Column(String(36), nullable=False)
    object_id = Column(String(36), nullable=False)
    compatibility_score = Column(Float, nullable=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("subject_id", "object_id", name="uq_match_record_pair"),
        Index("idx_match_record_status_score", "status", "compatibility_score"),
        Index("idx_match_record_object_id", "object_id"),
    )


class MatchGroup(Base):
    __tablename__ = "match_group"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    name = Column(String, nullable=False)
    match_week = Column(Date, nullable=False)
    group_type = Column(String, nullable=False)
    gender_composition = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    capacity = Column(Integer, nullable=False, default=5)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("idx_match_group_week_status", "match_week", "status"),)


class GroupMember(Base):
    __tablename__ = "group_member"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    group_id = Column(String(36), ForeignKey("match_group.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(String(36), nullable=False)
    joined_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("group_id", "member_id", name="uq_group_member"),
        Index("idx_group_member_member_id", "member_id"),
    )
