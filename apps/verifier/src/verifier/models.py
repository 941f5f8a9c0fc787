from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from verifier.db import Base


class VerificationJobRecord(Base):
    __tablename__ = "verification_jobs"

    job_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    network: Mapped[str] = mapped_column(String(256), nullable=False)
    class_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    contract_name: Mapped[str] = mapped_column(String(256), nullable=False)
    package: Mapped[str | None] = mapped_column(String(256), nullable=True)
    license: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cairo_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    scarb_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    dojo_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_category: Mapped[str | None] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index("idx_verification_jobs_network", "network"),
        Index("idx_verification_jobs_status", "status"),
        Index("idx_verification_jobs_class_hash", "class_hash"),
        Index("idx_verification_jobs_created_at", "created_at"),
    )


class StatusUpdateRecord(Base):
    __tablename__ = "status_updates"

    job_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("verification_jobs.job_id", ondelete="CASCADE"),
        primary_key=True,
    )
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
