from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from historian_query.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer, "sqlite")


class ArchiveDatabase(Base):
    __tablename__ = "archive_databases"
    __table_args__ = (UniqueConstraint("system_name", "name", name="uq_archive_databases_system_name"),)

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    system_name: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")


class ArchivePoint(Base):
    __tablename__ = "archive_points"
    __table_args__ = (
        UniqueConstraint("name", name="uq_archive_points_name"),
        CheckConstraint(
            "point_type IN ('float16','float32','float64','int16','int32','int64',"
            "'digital','boolean','string','timestamp','blob')",
            name="ck_archive_points_point_type",
        ),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    point_type: Mapped[str] = mapped_column(String(16), nullable=False, default="float64", server_default="float64")
    step: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    engineering_units: Mapped[str] = mapped_column(String(64), nullable=False, default="", server_default="")
    descriptor: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")

    values: Mapped[list["ArchiveValue"]] = relationship(
        back_populates="point",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ArchiveValue(Base):
    __tablename__ = "archive_values"
    __table_args__ = (Index("ix_archive_values_point_ts", "point_id", "ts"),)

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    point_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("archive_points.id", ondelete="CASCADE"),
        nullable=False,
    )
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    value_num: Mapped[float | None] = mapped_column(Float, nullable=True)
    value_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_bool: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    value_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    good: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    point: Mapped[ArchivePoint] = relationship(back_populates="values")


class UnitOfMeasureRecord(Base):
    __tablename__ = "units_of_measure"
    __table_args__ = (UniqueConstraint("system_name", "name", name="uq_units_of_measure_system_name"),)

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)
    system_name: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    abbreviation: Mapped[str] = mapped_column(String(32), nullable=False)
    uom_class: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
