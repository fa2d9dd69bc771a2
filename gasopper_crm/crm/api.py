from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from gasopper_crm.api.errors import crm_error_response
from gasopper_crm.api.schemas import MessageRead
from gasopper_crm.auth.dependencies import get_current_actor
from gasopper_crm.core.database import get_db
from gasopper_crm.core.errors import CRMError
from gasopper_crm.core.rbac import require_roles
from gasopper_crm.crm.schemas import (
    LeadAssign,
    LeadConvertRequest,
    LeadCreate,
    LeadRead,
    LeadStatsRead,
    LeadStatusUpdate,
    LeadUpdate,
    OpportunityAssign,
    OpportunityRead,
    OpportunityStatsRead,
    OpportunityStatusUpdate,
    OpportunityUpdate,
    SiteCreate,
    SiteRead,
    SiteUpdate,
    StationTypeRead,
    StatusRead,
)
from gasopper_crm.crm.service import LeadService, OpportunityService, SiteService
from gasopper_crm.directory.models import Role
from gasopper_crm.security.context import Actor


leads_router = APIRouter(prefix="/api", tags=["crm.leads"])
opportunities_router = APIRouter(prefix="/api", tags=["crm.opportunities"])
sites_router = APIRouter(prefix="/api", tags=["crm.sites"])
lead_service = LeadService()
opportunity_service = OpportunityService()
site_service = SiteService(opportunity_service)


@leads_router.get("/leads", response_model=list[LeadRead])
def list_leads(
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[LeadRead]:
    return lead_service.list_leads(db, actor, include_deleted=include_deleted)


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.create_lead(db, actor, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.get("/leads/my-leads", response_model=list[LeadRead])
def my_leads(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[LeadRead]:
    return lead_service.list_my_leads(db, actor)


@leads_router.get("/leads/team-leads", response_model=list[LeadRead])
def team_leads(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[LeadRead] | JSONResponse:
    try:
        require_roles(actor, Role.ADMIN, Role.MANAGER)
        return lead_service.list_team_leads(db, actor)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.get("/leads/stats", response_model=LeadStatsRead)
def lead_stats(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadStatsRead:
    return lead_service.lead_stats(db, actor)


@leads_router.get("/leads/statuses", response_model=list[StatusRead])
def lead_statuses(actor: Actor = Depends(get_current_actor)) -> list[StatusRead]:
    return lead_service.list_lead_statuses()


@leads_router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: int,
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, actor, lead_id, include_deleted=include_deleted)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.put("/leads/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: int,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead(db, actor, lead_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.delete("/leads/{lead_id}", response_model=MessageRead)
def delete_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageRead | JSONResponse:
    try:
        lead_service.delete_lead(db, actor, lead_id)
        return MessageRead(message="Lead deleted")
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.put("/leads/{lead_id}/status", response_model=LeadRead)
def update_lead_status(
    request: Request,
    lead_id: int,
    dto: LeadStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.update_lead_status(db, actor, lead_id, dto.status_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.post("/leads/{lead_id}/convert-to-opportunity", response_model=LeadRead)
def convert_lead(
    request: Request,
    lead_id: int,
    dto: LeadConvertRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.convert_lead(db, actor, lead_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@leads_router.put("/leads/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    request: Request,
    lead_id: int,
    dto: LeadAssign,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        require_roles(actor, Role.ADMIN, Role.MANAGER)
        return lead_service.assign_lead(db, actor, lead_id, dto.assigned_to)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.get("/opportunities", response_model=list[OpportunityRead])
def list_opportunities(
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[OpportunityRead]:
    return opportunity_service.list_opportunities(db, actor, include_deleted=include_deleted)


@opportunities_router.get("/opportunities/my-opportunities", response_model=list[OpportunityRead])
def my_opportunities(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[OpportunityRead]:
    return opportunity_service.list_my_opportunities(db, actor)


@opportunities_router.get("/opportunities/team-opportunities", response_model=list[OpportunityRead])
def team_opportunities(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[OpportunityRead] | JSONResponse:
    try:
        require_roles(actor, Role.ADMIN, Role.MANAGER)
        return opportunity_service.list_team_opportunities(db, actor)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.get("/opportunities/stats", response_model=OpportunityStatsRead)
def opportunity_stats(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityStatsRead:
    return opportunity_service.opportunity_stats(db, actor)


@opportunities_router.get("/opportunities/statuses", response_model=list[StatusRead])
def opportunity_statuses(actor: Actor = Depends(get_current_actor)) -> list[StatusRead]:
    return opportunity_service.list_opportunity_statuses()


@opportunities_router.get("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def get_opportunity(
    request: Request,
    opportunity_id: int,
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.get_opportunity(db, actor, opportunity_id, include_deleted=include_deleted)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.put("/opportunities/{opportunity_id}", response_model=OpportunityRead)
def update_opportunity(
    request: Request,
    opportunity_id: int,
    dto: OpportunityUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.update_opportunity(db, actor, opportunity_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.put("/opportunities/{opportunity_id}/status", response_model=OpportunityRead)
def update_opportunity_status(
    request: Request,
    opportunity_id: int,
    dto: OpportunityStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.update_opportunity_status(db, actor, opportunity_id, dto.status_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.put("/opportunities/{opportunity_id}/assign", response_model=OpportunityRead)
def assign_opportunity(
    request: Request,
    opportunity_id: int,
    dto: OpportunityAssign,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead | JSONResponse:
    try:
        require_roles(actor, Role.ADMIN, Role.MANAGER)
        return opportunity_service.assign_opportunity(db, actor, opportunity_id, dto.assigned_to)
    except CRMError as exc:
        return crm_error_response(request, exc)


@opportunities_router.post(
    "/opportunities/{opportunity_id}/update-status-from-stations",
    response_model=OpportunityRead,
)
def recompute_opportunity_status(
    request: Request,
    opportunity_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> OpportunityRead | JSONResponse:
    try:
        return opportunity_service.recompute_status_for(db, actor, opportunity_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@sites_router.get("/station-types", response_model=list[StationTypeRead])
def list_station_types(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[StationTypeRead]:
    return site_service.list_station_types(db)


@sites_router.post(
    "/opportunities/{opportunity_id}/sites",
    response_model=SiteRead,
    status_code=status.HTTP_201_CREATED,
)
def add_site(
    request: Request,
    opportunity_id: int,
    dto: SiteCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SiteRead | JSONResponse:
    try:
        return site_service.add_site(db, actor, opportunity_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@sites_router.put("/sites/{site_id}", response_model=SiteRead)
def update_site(
    request: Request,
    site_id: int,
    dto: SiteUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SiteRead | JSONResponse:
    try:
        return site_service.update_site(db, actor, site_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@sites_router.delete("/sites/{site_id}", response_model=MessageRead)
def delete_site(
    request: Request,
    site_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> MessageRead | JSONResponse:
    try:
        site_service.delete_site(db, actor, site_id)
        return MessageRead(message="Site deleted")
    except CRMError as exc:
        return crm_error_response(request, exc)
