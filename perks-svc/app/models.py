from __future__ import annotations
import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy.orm import declarative_base, Mapped, mapped_column, relationship
from sqlalchemy import UniqueConstraint, Index, CheckConstraint, ForeignKey, Enum as SqlEnum
from sqlalchemy.types import DateTime, String, Text, Integer, Float

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

def as_utc(dt: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes; everything is stored as UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

class PerkKind(str, Enum):
    CHECKIN = "checkin"
    CODE = "code"

class ClaimStatus(str, Enum):
    RESERVED = "reserved"
    REDEEMED = "redeemed"

class Perk(Base):
    __tablename__ = "perks"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(160), nullable=False)
    venue_name: Mapped[str | None] = mapped_column(String(160))
    neighborhood: Mapped[str | None] = mapped_column(String(120))
    kind: Mapped[PerkKind] = mapped_column(SqlEnum(PerkKind), default=PerkKind.CHECKIN, nullable=False)
    max_claims: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(default=True, nullable=False)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    geofence_lat: Mapped[float | None] = mapped_column(Float)
    geofence_lng: Mapped[float | None] = mapped_column(Float)
    geofence_radius_m: Mapped[int | None] = mapped_column(Integer)
    staff_unlock_token: Mapped[str] = mapped_column(String(64), nullable=False)
    sponsor_tag: Mapped[str | None] = mapped_column(String(64))
    fine_print: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("max_claims > 0", name="ck_perk_max_claims"),
        CheckConstraint(
            "(geofence_lat IS NULL AND geofence_lng IS NULL AND geofence_radius_m IS NULL) OR "
            "(geofence_lat IS NOT NULL AND geofence_lng IS NOT NULL AND geofence_radius_m IS NOT NULL)",
            name="ck_perk_geofence_all_or_none",
        ),
        Index("ix_perks_active", "active"),
    )

    @property
    def has_geofence(self) -> bool:
        return None not in (self.geofence_lat, self.geofence_lng, self.geofence_radius_m)

class Claim(Base):
    __tablename__ = "perk_claims"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    perk_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("perks.id", ondelete="RESTRICT"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[ClaimStatus] = mapped_column(SqlEnum(ClaimStatus), default=ClaimStatus.RESERVED, nullable=False)
    redeem_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    redeemed_by: Mapped[str | None] = mapped_column(String(32))

    perk: Mapped[Perk] = relationship("Perk")

    __table_args__ = (
        UniqueConstraint("perk_id", "user_id", name="uq_claim_per_user_per_perk"),
        Index("ix_claims_perk_status", "perk_id", "status"),
        Index("ix_claims_user", "user_id"),
    )
