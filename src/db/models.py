"""ORM models for PathRec.

- Shop: one storefront; owns settings, collections and jobs, and carries the
  ``cache_version`` counter bumped whenever served recommendations change.
- Collection: the recommendable unit.
- Embedding: 1:1 with Collection, always written as (vector, model) together.
- Edge: directed, ranked recommendation from one collection to another.
- Job: queue row processed by the worker.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from src.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseModel(Base):
    """Common id and timestamp columns."""

    __abstract__ = True

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Shop(BaseModel):
    """`shops` table."""

    __tablename__ = "shops"

    domain = Column(String(255), unique=True, nullable=False, index=True)
    access_token = Column(String(255), nullable=True)
    billing_status = Column(String(32), nullable=False, default="none")
    cache_version = Column(Integer, nullable=False, default=0)
    last_analysed_at = Column(DateTime(timezone=True), nullable=True)

    settings = relationship(
        "ShopSettings",
        back_populates="shop",
        uselist=False,
        cascade="all, delete-orphan",
    )
    collections = relationship(
        "Collection", back_populates="shop", cascade="all, delete-orphan"
    )
    jobs = relationship("Job", back_populates="shop", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"Shop(id={self.id}, domain={self.domain})"


class ShopSettings(BaseModel):
    """`settings` table. Only ``max_buttons`` feeds the graph builder."""

    __tablename__ = "settings"

    shop_id = Column(
        Integer, ForeignKey("shops.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    max_buttons = Column(Integer, nullable=False, default=15)
    button_style = Column(String(16), nullable=False, default="pill")
    alignment = Column(String(16), nullable=False, default="left")

    shop = relationship("Shop", back_populates="settings")


class Collection(BaseModel):
    """`collections` table."""

    __tablename__ = "collections"

    shop_id = Column(
        Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id = Column(String(64), nullable=False)
    handle = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    product_sample = Column(Text, nullable=False, default="")
    audience = Column(String(16), nullable=False, default="unknown")
    is_excluded_sale = Column(Boolean, nullable=False, default=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    updated_at_source = Column(DateTime(timezone=True), nullable=True)

    shop = relationship("Shop", back_populates="collections")
    embedding = relationship(
        "Embedding",
        back_populates="collection",
        uselist=False,
        cascade="all, delete-orphan",
    )
    source_edges = relationship(
        "Edge",
        foreign_keys="Edge.source_collection_id",
        back_populates="source_collection",
        cascade="all, delete-orphan",
    )
    target_edges = relationship(
        "Edge",
        foreign_keys="Edge.target_collection_id",
        back_populates="target_collection",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("shop_id", "external_id", name="uq_collection_shop_external"),
        UniqueConstraint("shop_id", "handle", name="uq_collection_shop_handle"),
    )

    def __repr__(self) -> str:
        return f"Collection(id={self.id}, handle={self.handle})"


class Embedding(BaseModel):
    """`embeddings` table."""

    __tablename__ = "embeddings"

    collection_id = Column(
        Integer,
        ForeignKey("collections.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    model = Column(String(100), nullable=False)
    dimension = Column(Integer, nullable=False)
    vector = Column(JSON, nullable=False)
    # SHA-256 of the text that produced the vector
    text_hash = Column(String(64), nullable=False)

    collection = relationship("Collection", back_populates="embedding")

    def __repr__(self) -> str:
        return f"Embedding(collection_id={self.collection_id}, model={self.model})"


class Edge(BaseModel):
    """`edges` table."""

    __tablename__ = "edges"

    source_collection_id = Column(
        Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
    )
    target_collection_id = Column(
        Integer, ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
    )
    score = Column(Float, nullable=False)
    rank = Column(Integer, nullable=False)

    source_collection = relationship(
        "Collection", foreign_keys=[source_collection_id], back_populates="source_edges"
    )
    target_collection = relationship(
        "Collection", foreign_keys=[target_collection_id], back_populates="target_edges"
    )

    __table_args__ = (
        UniqueConstraint("source_collection_id", "rank", name="uq_edge_source_rank"),
        CheckConstraint(
            "source_collection_id != target_collection_id", name="ck_edge_no_self_loop"
        ),
        CheckConstraint("rank >= 1", name="ck_edge_rank_positive"),
        Index("ix_edge_target", "target_collection_id"),
    )

    def __repr__(self) -> str:
        return (
            f"Edge(source={self.source_collection_id}, "
            f"target={self.target_collection_id}, rank={self.rank})"
        )


class Job(BaseModel):
    """`jobs` table, consumed FIFO by ``created_at``."""

    __tablename__ = "jobs"

    shop_id = Column(
        Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    progress_percent = Column(Integer, nullable=False, default=0)
    step = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    results = Column(JSON, nullable=True)

    shop = relationship("Shop", back_populates="jobs")

    def __repr__(self) -> str:
        return f"Job(id={self.id}, type={self.type}, status={self.status})"
