import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from phonica.models import Base, utcnow

# Association tables. Rows disappear with either side (ON DELETE CASCADE);
# deleting a tag or project that still has materials is blocked in the routers.
material_tags = Table(
    "material_tags",
    Base.metadata,
    Column("material_id", ForeignKey("materials.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

material_equipments = Table(
    "material_equipments",
    Base.metadata,
    Column("material_id", ForeignKey("materials.id", ondelete="CASCADE"), primary_key=True),
    Column("equipment_id", ForeignKey("equipments.id", ondelete="CASCADE"), primary_key=True),
)

project_materials = Table(
    "project_materials",
    Base.metadata,
    Column("project_id", ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("material_id", ForeignKey("materials.id", ondelete="CASCADE"), primary_key=True),
)


class Material(Base):
    __tablename__ = "materials"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)

    # Stored relative to the public root, e.g. /uploads/materials/<uuid>_take1.wav
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audio properties (null until a file has been analyzed)
    file_format: Mapped[str | None] = mapped_column(String(20), nullable=True)
    sample_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bit_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    channels: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Location
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    tags: Mapped[list["Tag"]] = relationship(  # noqa: F821
        secondary=material_tags, back_populates="materials", order_by="Tag.name"
    )
    equipments: Mapped[list["Equipment"]] = relationship(  # noqa: F821
        secondary=material_equipments, back_populates="materials", order_by="Equipment.name"
    )
    projects: Mapped[list["Project"]] = relationship(  # noqa: F821
        secondary=project_materials, back_populates="materials", order_by="Project.name"
    )

    __table_args__ = (
        UniqueConstraint("slug", name="uq_materials_slug"),
        UniqueConstraint("title", name="uq_materials_title"),
        Index("ix_materials_recorded_at", "recorded_at"),
    )
