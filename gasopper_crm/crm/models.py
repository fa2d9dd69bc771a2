from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from gasopper_crm.core.database import Base
from gasopper_crm.directory.models import utcnow


class LeadStatus(enum.IntEnum):
    NEW = 1
    CONVERTED = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def description(self) -> str:
        return {
            LeadStatus.NEW: "Lead captured, not yet converted",
            LeadStatus.CONVERTED: "Lead converted into an opportunity",
        }[self]


class OpportunityStatus(enum.IntEnum):
    ACTIVE = 1
    COMPLETE = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def description(self) -> str:
        return {
            OpportunityStatus.ACTIVE: "Sites still being provisioned",
            OpportunityStatus.COMPLETE: "Every site has complete provisioning details",
        }[self]


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (Index("ix_leads_assigned_status", "assigned_to", "status_id", "is_deleted"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    expected_stations: Mapped[int] = mapped_column(Integer, nullable=False)
    referral_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    referral_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    referral_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    referral_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=int(LeadStatus.NEW))
    assigned_to: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    converted_opportunity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Opportunity(Base):
    __tablename__ = "opportunities"
    __table_args__ = (
        UniqueConstraint("lead_id", name="uq_opportunities_lead_id"),
        Index("ix_opportunities_assigned_status", "assigned_to", "status_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(Integer, ForeignKey("leads.id"), nullable=False)
    owner_name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_address: Mapped[str] = mapped_column(Text, nullable=False)
    status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=int(OpportunityStatus.ACTIVE))
    assigned_to: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class StationType(Base):
    __tablename__ = "station_types"
    __table_args__ = (UniqueConstraint("name", name="uq_station_types_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    opportunity_id: Mapped[int] = mapped_column(Integer, ForeignKey("opportunities.id"), nullable=False, index=True)
    station_name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    poc_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    poc_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    poc_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    number_of_pumps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    number_of_employees: Mapped[int | None] = mapped_column(Integer, nullable=True)
    station_type_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("station_types.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
