"""
SQLAlchemy ORM Models
Hospitality Reputation Tracker
"""

from sqlalchemy import (
    Column, Integer, Float, String, Text,
    DateTime, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime
import uuid

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class PropertyRow(Base):
    __tablename__ = "property"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    city = Column(String(255), nullable=False)
    state = Column(String(100), default="")
    google_place_id = Column(String(255))
    booking_url = Column(String(1000))
    tripadvisor_url = Column(String(1000))
    expedia_url = Column(String(1000))
    kasa_url = Column(String(1000))
    website_url = Column(String(1000))
    created_at = Column(DateTime, default=datetime.utcnow)

    snapshots = relationship("SnapshotRow", back_populates="property", cascade="all, delete-orphan")
    aliases = relationship("PlatformAliasRow", back_populates="property", cascade="all, delete-orphan")


class PlatformAliasRow(Base):
    __tablename__ = "platform_alias"

    id = Column(Integer, primary_key=True, autoincrement=True)
    property_id = Column(String(36), ForeignKey("property.id"), nullable=False)
    platform = Column(String(50), nullable=False)
    source_id_or_url = Column(String(1000))
    platform_id = Column(String(255))
    platform_url = Column(String(1000))
    platform_name = Column(String(255))
    resolution_status = Column(String(50), default="pending")
    confidence_score = Column(Float)
    candidate_options = Column(JSON, default=list)
    last_resolved_at = Column(DateTime)
    last_error = Column(Text)

    property = relationship("PropertyRow", back_populates="aliases")

    __table_args__ = (
        UniqueConstraint("property_id", "platform", name="uq_alias_property_platform"),
    )


class SnapshotRow(Base):
    __tablename__ = "source_snapshot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    property_id = Column(String(36), ForeignKey("property.id"), nullable=False)
    platform = Column(String(50), nullable=False)
    score_raw = Column(Float)
    score_scale = Column(Float)
    review_count = Column(Integer, default=0)
    normalized_score = Column(Float)
    status = Column(String(50), default="found")  # found, not_listed
    collected_at = Column(DateTime, default=datetime.utcnow)

    property = relationship("PropertyRow", back_populates="snapshots")

    __table_args__ = (
        Index("ix_snapshot_property_platform", "property_id", "platform"),
        Index("ix_snapshot_collected", "collected_at"),
    )


class GroupRow(Base):
    __tablename__ = "property_group"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class GroupPropertyRow(Base):
    __tablename__ = "group_property"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String(36), ForeignKey("property_group.id"), nullable=False)
    property_id = Column(String(36), ForeignKey("property.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("group_id", "property_id", name="uq_group_property"),
    )


class GroupSnapshotRow(Base):
    __tablename__ = "group_snapshot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String(36), ForeignKey("property_group.id"), nullable=False)
    weighted_score = Column(Float)
    total_reviews = Column(Integer, default=0)
    collected_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_group_snapshot_group", "group_id"),)


class DebugLogRow(Base):
    __tablename__ = "debug_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    property_id = Column(String(36), ForeignKey("property.id"), nullable=False)
    platform = Column(String(50), nullable=False)
    error_message = Column(Text)
    retry_count = Column(Integer, default=0)
    status = Column(String(50))
    updated_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("property_id", "platform", name="uq_debug_property_platform"),
    )


class ReviewTextRow(Base):
    __tablename__ = "review_text"

    id = Column(Integer, primary_key=True, autoincrement=True)
    property_id = Column(String(36), ForeignKey("property.id"), nullable=False)
    platform = Column(String(50), nullable=False)
    review_text = Column(Text, nullable=False)
    review_rating = Column(Float)
    review_date = Column(String(50))
    reviewer_name = Column(String(255))
    fetched_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("ix_review_text_property", "property_id", "platform"),)


class ReviewAnalysisRow(Base):
    __tablename__ = "review_analysis"

    id = Column(Integer, primary_key=True, autoincrement=True)
    property_id = Column(String(36), ForeignKey("property.id"), nullable=False, unique=True)
    positive_themes = Column(JSON, default=list)
    negative_themes = Column(JSON, default=list)
    summary = Column(Text)
    review_count = Column(Integer, default=0)
    analyzed_at = Column(DateTime, default=datetime.utcnow)


# Table name → ORM class, used by the generic row store.
TABLES = {
    model.__tablename__: model
    for model in (
        PropertyRow, PlatformAliasRow, SnapshotRow, GroupRow, GroupPropertyRow,
        GroupSnapshotRow, DebugLogRow, ReviewTextRow, ReviewAnalysisRow,
    )
}
