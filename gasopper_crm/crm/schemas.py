from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class StatusRead(BaseModel):
    id: int
    name: str
    description: str


class LeadCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone_number: str = Field(min_length=1, max_length=32)
    email: EmailStr
    address: str = Field(min_length=1)
    expected_stations: int = Field(ge=1)
    referral_name: str | None = Field(default=None, max_length=200)
    referral_email: EmailStr | None = None
    referral_phone: str | None = Field(default=None, max_length=32)
    referral_address: str | None = None
    assigned_to: int | None = None


class LeadUpdate(BaseModel):
    """Partial update.

    Omitted fields are untouched. Blank values for the required contact fields
    are ignored; ``null`` or ``""`` on a referral field clears it.
    """

    name: str | None = Field(default=None, max_length=200)
    phone_number: str | None = Field(default=None, max_length=32)
    email: EmailStr | None = None
    address: str | None = None
    expected_stations: int | None = Field(default=None, ge=1)
    referral_name: str | None = Field(default=None, max_length=200)
    referral_email: EmailStr | None = None
    referral_phone: str | None = Field(default=None, max_length=32)
    referral_address: str | None = None
    assigned_to: int | None = None


class LeadStatusUpdate(BaseModel):
    status_id: int


class LeadAssign(BaseModel):
    assigned_to: int


class LeadConvertRequest(BaseModel):
    owner_name: str = Field(min_length=1, max_length=200)
    owner_address: str = Field(min_length=1)
    assigned_to: int | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone_number: str
    email: str
    address: str
    expected_stations: int
    referral_name: str | None
    referral_email: str | None
    referral_phone: str | None
    referral_address: str | None
    status_id: int
    status_name: str
    assigned_to: int
    assigned_to_name: str | None
    created_by: int
    created_by_name: str | None
    opportunity_id: int | None
    opportunity_status: str | None
    is_deleted: bool
    created_at: datetime
    updated_at: datetime


class LeadStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_leads: int
    new_leads: int
    converted_leads: int
    conversion_rate: float
    average_days_to_convert: int
    status_breakdown: dict[str, int]


class SiteCreate(BaseModel):
    station_name: str = Field(min_length=1, max_length=200)
    address: str = Field(min_length=1)
    poc_name: str | None = Field(default=None, max_length=200)
    poc_phone: str | None = Field(default=None, max_length=32)
    poc_email: EmailStr | None = None
    number_of_pumps: int | None = Field(default=None, ge=1)
    number_of_employees: int | None = Field(default=None, ge=1)
    station_type_id: int | None = None
    notes: str | None = None


class SiteUpdate(BaseModel):
    station_name: str | None = Field(default=None, max_length=200)
    address: str | None = None
    poc_name: str | None = Field(default=None, max_length=200)
    poc_phone: str | None = Field(default=None, max_length=32)
    poc_email: EmailStr | None = None
    number_of_pumps: int | None = Field(default=None, ge=1)
    number_of_employees: int | None = Field(default=None, ge=1)
    station_type_id: int | None = None
    notes: str | None = None


class SiteRead(BaseModel):
    id: int
    opportunity_id: int
    station_name: str
    address: str
    poc_name: str | None
    poc_phone: str | None
    poc_email: str | None
    number_of_pumps: int | None
    number_of_employees: int | None
    station_type_id: int | None
    station_type_name: str | None
    notes: str | None
    is_complete: bool
    missing_fields: list[str]
    created_at: datetime


class StationTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class OpportunityUpdate(BaseModel):
    owner_name: str = Field(min_length=1, max_length=200)
    owner_address: str = Field(min_length=1)
    assigned_to: int | None = None


class OpportunityStatusUpdate(BaseModel):
    status_id: int


class OpportunityAssign(BaseModel):
    assigned_to: int


class OpportunityRead(BaseModel):
    id: int
    lead_id: int
    lead_name: str | None
    owner_name: str
    owner_address: str
    status_id: int
    status_name: str
    assigned_to: int
    assigned_to_name: str | None
    created_by: int
    created_by_name: str | None
    total_stations: int
    complete_stations: int
    incomplete_stations: int
    completion_percentage: float
    stations: list[SiteRead] = Field(default_factory=list)
    is_deleted: bool
    created_at: datetime
    updated_at: datetime


class OpportunityStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_opportunities: int
    active_opportunities: int
    complete_opportunities: int
    completion_rate: float
    total_stations: int
    complete_stations: int
    station_completion_rate: float
    average_stations_per_opportunity: float
    average_days_to_complete: int
    status_breakdown: dict[str, int]
