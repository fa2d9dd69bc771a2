from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gasopper_crm.core.errors import (
    ConflictFailed,
    NotFoundOrDenied,
    OperationFailed,
    ValidationFailed,
    storage_boundary,
)
from gasopper_crm.crm.completeness import completion_percentage, is_site_complete, missing_site_fields
from gasopper_crm.crm.models import Lead, LeadStatus, Opportunity, OpportunityStatus, Site, StationType
from gasopper_crm.crm.schemas import (
    LeadConvertRequest,
    LeadCreate,
    LeadRead,
    LeadStatsRead,
    LeadUpdate,
    OpportunityRead,
    OpportunityStatsRead,
    OpportunityUpdate,
    SiteCreate,
    SiteRead,
    SiteUpdate,
    StationTypeRead,
    StatusRead,
)
from gasopper_crm.crm.stats import LeadStats, OpportunityStats, compute_lead_stats, compute_opportunity_stats
from gasopper_crm.directory.models import Role, User
from gasopper_crm.directory.repository import UserDirectory
from gasopper_crm.metrics import observe_lead_converted, observe_opportunity_status_recomputed, observe_site_change
from gasopper_crm.otel import crm_span
from gasopper_crm.security.context import Actor
from gasopper_crm.security.policy import AccessPolicy


logger = logging.getLogger("gasopper.crm")

_ASSIGNER_ROLES = {Role.ADMIN, Role.MANAGER}


def _policy(session: Session) -> AccessPolicy:
    return AccessPolicy(UserDirectory(session))


def _user_names(session: Session, user_ids: Iterable[int | None]) -> dict[int, str]:
    wanted = {user_id for user_id in user_ids if user_id is not None}
    if not wanted:
        return {}
    rows = session.execute(
        select(User.id, User.first_name, User.last_name).where(User.id.in_(wanted))
    ).all()
    return {row.id: f"{row.first_name} {row.last_name}" for row in rows}


def _station_type_names(session: Session) -> dict[int, str]:
    rows = session.execute(select(StationType.id, StationType.name)).all()
    return {row.id: row.name for row in rows}


def _live_sites(session: Session, opportunity_ids: Sequence[int]) -> dict[int, list[Site]]:
    grouped: dict[int, list[Site]] = {opportunity_id: [] for opportunity_id in opportunity_ids}
    if not opportunity_ids:
        return grouped
    stmt = (
        select(Site)
        .where(Site.opportunity_id.in_(opportunity_ids), Site.is_deleted.is_(False))
        .order_by(Site.id)
    )
    for site in session.scalars(stmt).all():
        grouped[site.opportunity_id].append(site)
    return grouped


def _site_read(site: Site, station_types: dict[int, str]) -> SiteRead:
    return SiteRead(
        id=site.id,
        opportunity_id=site.opportunity_id,
        station_name=site.station_name,
        address=site.address,
        poc_name=site.poc_name,
        poc_phone=site.poc_phone,
        poc_email=site.poc_email,
        number_of_pumps=site.number_of_pumps,
        number_of_employees=site.number_of_employees,
        station_type_id=site.station_type_id,
        station_type_name=station_types.get(site.station_type_id) if site.station_type_id is not None else None,
        notes=site.notes,
        is_complete=is_site_complete(site),
        missing_fields=missing_site_fields(site),
        created_at=site.created_at,
    )


def _resolve_assignee(policy: AccessPolicy, actor: Actor, requested: int | None) -> int:
    """Assignment on create and convert: defaults to the actor, violations fail hard."""
    if requested is None:
        return actor.user_id
    if not policy.can_assign(actor, requested):
        raise ValidationFailed("assignment not allowed", details={"assigned_to": requested})
    if policy.directory.get_active_user(requested) is None:
        raise ValidationFailed("assignee not found or inactive", details={"assigned_to": requested})
    return requested


def _reassignment_allowed(policy: AccessPolicy, actor: Actor, requested: int) -> bool:
    if actor.role not in _ASSIGNER_ROLES:
        return False
    if not policy.can_assign(actor, requested):
        return False
    return policy.directory.get_active_user(requested) is not None


def _status_reads(statuses: Iterable[LeadStatus] | Iterable[OpportunityStatus]) -> list[StatusRead]:
    return [StatusRead(id=int(item), name=item.label, description=item.description) for item in statuses]


class LeadService:
    entity_type = "crm.lead"
    required_text_fields = ("name", "phone_number", "email", "address")
    clearable_fields = ("referral_name", "referral_email", "referral_phone", "referral_address")

    def create_lead(self, session: Session, actor: Actor, dto: LeadCreate) -> LeadRead:
        with storage_boundary(session, "lead.create"):
            assignee = _resolve_assignee(_policy(session), actor, dto.assigned_to)
            lead = Lead(
                name=dto.name,
                phone_number=dto.phone_number,
                email=str(dto.email),
                address=dto.address,
                expected_stations=dto.expected_stations,
                referral_name=dto.referral_name or None,
                referral_email=str(dto.referral_email) if dto.referral_email is not None else None,
                referral_phone=dto.referral_phone or None,
                referral_address=dto.referral_address or None,
                status_id=int(LeadStatus.NEW),
                assigned_to=assignee,
                created_by=actor.user_id,
            )
            session.add(lead)
            session.commit()
            logger.info(
                "lead.created",
                extra={"operation": "lead.create", "entity_id": lead.id, "actor_id": actor.user_id},
            )
            return self._to_read(session, actor, lead)

    def get_lead(self, session: Session, actor: Actor, lead_id: int, include_deleted: bool = False) -> LeadRead:
        with storage_boundary(session, "lead.get"):
            lead = self.load_visible(session, _policy(session), actor, lead_id, include_deleted=include_deleted)
            return self._to_read(session, actor, lead)

    def list_leads(self, session: Session, actor: Actor, include_deleted: bool = False) -> list[LeadRead]:
        try:
            with storage_boundary(session, "lead.list"):
                stmt = select(Lead)
                if not include_deleted:
                    stmt = stmt.where(Lead.is_deleted.is_(False))
                stmt = _policy(session).apply_owner_scope(stmt, Lead.assigned_to, actor)
                leads = session.scalars(stmt.order_by(Lead.updated_at.desc(), Lead.id.desc())).all()
                return self._to_reads(session, actor, leads)
        except OperationFailed:
            return []

    def list_my_leads(self, session: Session, actor: Actor) -> list[LeadRead]:
        return self._list_assigned_to(session, actor, {actor.user_id}, "lead.list_mine")

    def list_team_leads(self, session: Session, actor: Actor) -> list[LeadRead]:
        try:
            with storage_boundary(session, "lead.list_team"):
                owners = {actor.user_id} | UserDirectory(session).active_team_ids(actor.user_id)
        except OperationFailed:
            return []
        return self._list_assigned_to(session, actor, owners, "lead.list_team")

    def update_lead(self, session: Session, actor: Actor, lead_id: int, dto: LeadUpdate) -> LeadRead:
        with storage_boundary(session, "lead.update"):
            policy = _policy(session)
            lead = self.load_visible(session, policy, actor, lead_id)
            payload = dto.model_dump(exclude_unset=True)
            requested_assignee = payload.pop("assigned_to", None)

            for field_name in self.required_text_fields:
                value = payload.get(field_name)
                if value:
                    setattr(lead, field_name, str(value))
            if payload.get("expected_stations") is not None:
                lead.expected_stations = payload["expected_stations"]
            for field_name in self.clearable_fields:
                if field_name in payload:
                    value = payload[field_name]
                    setattr(lead, field_name, str(value) if value else None)

            if requested_assignee is not None and requested_assignee != lead.assigned_to:
                if _reassignment_allowed(policy, actor, requested_assignee):
                    lead.assigned_to = requested_assignee
                else:
                    logger.info(
                        "lead.reassignment_ignored",
                        extra={"operation": "lead.update", "entity_id": lead.id, "actor_id": actor.user_id},
                    )

            session.commit()
            return self._to_read(session, actor, lead)

    def assign_lead(self, session: Session, actor: Actor, lead_id: int, assigned_to: int) -> LeadRead:
        with storage_boundary(session, "lead.assign"):
            policy = _policy(session)
            lead = self.load_visible(session, policy, actor, lead_id)
            if not _reassignment_allowed(policy, actor, assigned_to):
                raise ValidationFailed("assignment not allowed", details={"assigned_to": assigned_to})
            lead.assigned_to = assigned_to
            session.commit()
            return self._to_read(session, actor, lead)

    def delete_lead(self, session: Session, actor: Actor, lead_id: int) -> None:
        with storage_boundary(session, "lead.delete"):
            lead = self.load_visible(session, _policy(session), actor, lead_id)
            lead.is_deleted = True
            session.commit()
            logger.info(
                "lead.deleted",
                extra={"operation": "lead.delete", "entity_id": lead_id, "actor_id": actor.user_id},
            )

    def update_lead_status(self, session: Session, actor: Actor, lead_id: int, status_id: int) -> LeadRead:
        with storage_boundary(session, "lead.update_status"):
            lead = self.load_visible(session, _policy(session), actor, lead_id)
            try:
                new_status = LeadStatus(status_id)
            except ValueError as exc:
                raise ValidationFailed("invalid lead status", details={"status_id": status_id}) from exc
            if new_status != lead.status_id:
                opportunity_id = lead.converted_opportunity_id or session.scalar(
                    select(Opportunity.id).where(Opportunity.lead_id == lead.id)
                )
                if (new_status == LeadStatus.CONVERTED) != (opportunity_id is not None):
                    raise ValidationFailed(
                        "lead status must match its conversion",
                        details={"status_id": status_id, "opportunity_id": opportunity_id},
                    )
            lead.status_id = int(new_status)
            session.commit()
            return self._to_read(session, actor, lead)

    def convert_lead(self, session: Session, actor: Actor, lead_id: int, dto: LeadConvertRequest) -> LeadRead:
        with crm_span("crm.lead.convert", lead_id=lead_id, actor_id=actor.user_id) as span:
            with storage_boundary(session, "lead.convert"):
                policy = _policy(session)
                lead = self.load_visible(session, policy, actor, lead_id)
                existing_id = session.scalar(select(Opportunity.id).where(Opportunity.lead_id == lead.id))
                if existing_id is not None or lead.converted_opportunity_id is not None:
                    raise ConflictFailed(
                        "lead already converted",
                        details={"opportunity_id": existing_id or lead.converted_opportunity_id},
                    )
                assignee = _resolve_assignee(policy, actor, dto.assigned_to)

                opportunity = Opportunity(
                    lead_id=lead.id,
                    owner_name=dto.owner_name,
                    owner_address=dto.owner_address,
                    status_id=int(OpportunityStatus.ACTIVE),
                    assigned_to=assignee,
                    created_by=actor.user_id,
                )
                try:
                    session.add(opportunity)
                    session.flush()
                    lead.status_id = int(LeadStatus.CONVERTED)
                    lead.converted_opportunity_id = opportunity.id
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise ConflictFailed("lead already converted") from exc

                span.set_attribute("opportunity_id", opportunity.id)
                observe_lead_converted()
                logger.info(
                    "lead.converted",
                    extra={"operation": "lead.convert", "entity_id": lead.id, "actor_id": actor.user_id},
                )
                return self._to_read(session, actor, lead)

    def lead_stats(self, session: Session, actor: Actor) -> LeadStatsRead:
        try:
            with storage_boundary(session, "lead.stats"):
                stmt = select(Lead).where(Lead.is_deleted.is_(False))
                stmt = _policy(session).apply_owner_scope(stmt, Lead.assigned_to, actor)
                leads = session.scalars(stmt).all()
                lead_ids = [lead.id for lead in leads]
                converted_at: dict[int, datetime] = {}
                if lead_ids:
                    rows = session.execute(
                        select(Opportunity.lead_id, Opportunity.created_at).where(Opportunity.lead_id.in_(lead_ids))
                    ).all()
                    converted_at = {row.lead_id: row.created_at for row in rows}
                stats = compute_lead_stats(leads, converted_at)
        except OperationFailed:
            stats = LeadStats()
        return LeadStatsRead.model_validate(stats)

    def list_lead_statuses(self) -> list[StatusRead]:
        return _status_reads(LeadStatus)

    def load_visible(
        self,
        session: Session,
        policy: AccessPolicy,
        actor: Actor,
        lead_id: int,
        include_deleted: bool = False,
    ) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None or (lead.is_deleted and not include_deleted):
            raise NotFoundOrDenied("lead not found")
        if not policy.can_access(actor, lead.assigned_to):
            policy.record_denied(actor, self.entity_type, lead_id)
            raise NotFoundOrDenied("lead not found")
        return lead

    def _list_assigned_to(
        self, session: Session, actor: Actor, owner_ids: set[int], operation: str
    ) -> list[LeadRead]:
        try:
            with storage_boundary(session, operation):
                stmt = (
                    select(Lead)
                    .where(Lead.assigned_to.in_(owner_ids), Lead.is_deleted.is_(False))
                    .order_by(Lead.updated_at.desc(), Lead.id.desc())
                )
                return self._to_reads(session, actor, session.scalars(stmt).all())
        except OperationFailed:
            return []

    def _to_read(self, session: Session, actor: Actor, lead: Lead) -> LeadRead:
        return self._to_reads(session, actor, [lead])[0]

    def _to_reads(self, session: Session, actor: Actor, leads: Sequence[Lead]) -> list[LeadRead]:
        if not leads:
            return []
        names = _user_names(session, [user_id for lead in leads for user_id in (lead.assigned_to, lead.created_by)])
        opportunities = {
            item.lead_id: item
            for item in session.scalars(
                select(Opportunity).where(Opportunity.lead_id.in_([lead.id for lead in leads]))
            ).all()
        }
        policy = _policy(session)
        results: list[LeadRead] = []
        for lead in leads:
            opportunity = opportunities.get(lead.id)
            opportunity_id = lead.converted_opportunity_id
            opportunity_status = None
            if opportunity is not None:
                # Link details stay hidden when the opportunity sits outside the reader's visibility.
                if policy.can_access(actor, opportunity.assigned_to):
                    opportunity_id = opportunity.id
                    opportunity_status = OpportunityStatus(opportunity.status_id).label
                else:
                    opportunity_id = None
            results.append(
                LeadRead(
                    id=lead.id,
                    name=lead.name,
                    phone_number=lead.phone_number,
                    email=lead.email,
                    address=lead.address,
                    expected_stations=lead.expected_stations,
                    referral_name=lead.referral_name,
                    referral_email=lead.referral_email,
                    referral_phone=lead.referral_phone,
                    referral_address=lead.referral_address,
                    status_id=lead.status_id,
                    status_name=LeadStatus(lead.status_id).label,
                    assigned_to=lead.assigned_to,
                    assigned_to_name=names.get(lead.assigned_to),
                    created_by=lead.created_by,
                    created_by_name=names.get(lead.created_by),
                    opportunity_id=opportunity_id,
                    opportunity_status=opportunity_status,
                    is_deleted=lead.is_deleted,
                    created_at=lead.created_at,
                    updated_at=lead.updated_at,
                )
            )
        return results


class OpportunityService:
    entity_type = "crm.opportunity"

    def get_opportunity(
        self,
        session: Session,
        actor: Actor,
        opportunity_id: int,
        include_deleted: bool = False,
    ) -> OpportunityRead:
        with storage_boundary(session, "opportunity.get"):
            opportunity = self.load_visible(
                session, _policy(session), actor, opportunity_id, include_deleted=include_deleted
            )
            return self._to_read(session, opportunity)

    def list_opportunities(
        self,
        session: Session,
        actor: Actor,
        include_deleted: bool = False,
    ) -> list[OpportunityRead]:
        try:
            with storage_boundary(session, "opportunity.list"):
                stmt = select(Opportunity)
                if not include_deleted:
                    stmt = stmt.where(Opportunity.is_deleted.is_(False))
                stmt = _policy(session).apply_owner_scope(stmt, Opportunity.assigned_to, actor)
                rows = session.scalars(stmt.order_by(Opportunity.updated_at.desc(), Opportunity.id.desc())).all()
                return self._to_reads(session, rows)
        except OperationFailed:
            return []

    def list_my_opportunities(self, session: Session, actor: Actor) -> list[OpportunityRead]:
        return self._list_assigned_to(session, {actor.user_id}, "opportunity.list_mine")

    def list_team_opportunities(self, session: Session, actor: Actor) -> list[OpportunityRead]:
        try:
            with storage_boundary(session, "opportunity.list_team"):
                owners = {actor.user_id} | UserDirectory(session).active_team_ids(actor.user_id)
        except OperationFailed:
            return []
        return self._list_assigned_to(session, owners, "opportunity.list_team")

    def update_opportunity(
        self,
        session: Session,
        actor: Actor,
        opportunity_id: int,
        dto: OpportunityUpdate,
    ) -> OpportunityRead:
        with storage_boundary(session, "opportunity.update"):
            policy = _policy(session)
            opportunity = self.load_visible(session, policy, actor, opportunity_id)
            self._apply_update(policy, actor, opportunity, dto)
            session.commit()
            return self._to_read(session, opportunity)

    def assign_opportunity(
        self,
        session: Session,
        actor: Actor,
        opportunity_id: int,
        assigned_to: int,
    ) -> OpportunityRead:
        with storage_boundary(session, "opportunity.assign"):
            policy = _policy(session)
            opportunity = self.load_visible(session, policy, actor, opportunity_id)
            if not _reassignment_allowed(policy, actor, assigned_to):
                raise ValidationFailed("assignment not allowed", details={"assigned_to": assigned_to})
            dto = OpportunityUpdate(
                owner_name=opportunity.owner_name,
                owner_address=opportunity.owner_address,
                assigned_to=assigned_to,
            )
            self._apply_update(policy, actor, opportunity, dto)
            session.commit()
            return self._to_read(session, opportunity)

    def update_opportunity_status(
        self,
        session: Session,
        actor: Actor,
        opportunity_id: int,
        status_id: int,
    ) -> OpportunityRead:
        with storage_boundary(session, "opportunity.update_status"):
            opportunity = self.load_visible(session, _policy(session), actor, opportunity_id)
            try:
                new_status = OpportunityStatus(status_id)
            except ValueError as exc:
                raise ValidationFailed("invalid opportunity status", details={"status_id": status_id}) from exc
            opportunity.status_id = int(new_status)
            session.commit()
            return self._to_read(session, opportunity)

    def recompute_status(self, session: Session, opportunity_id: int) -> OpportunityStatus:
        """Re-derive status from the non-deleted sites as they are right now."""
        with crm_span("crm.opportunity.recompute_status", opportunity_id=opportunity_id) as span:
            with storage_boundary(session, "opportunity.recompute_status"):
                opportunity = session.get(Opportunity, opportunity_id)
                if opportunity is None or opportunity.is_deleted:
                    raise NotFoundOrDenied("opportunity not found")
                derived = self.apply_derived_status(session, opportunity)
                session.commit()
            span.set_attribute("status", derived.label)
            return derived

    def recompute_status_for(self, session: Session, actor: Actor, opportunity_id: int) -> OpportunityRead:
        with storage_boundary(session, "opportunity.recompute_status"):
            opportunity = self.load_visible(session, _policy(session), actor, opportunity_id)
        self.recompute_status(session, opportunity.id)
        with storage_boundary(session, "opportunity.get"):
            return self._to_read(session, opportunity)

    def apply_derived_status(self, session: Session, opportunity: Opportunity) -> OpportunityStatus:
        sites = _live_sites(session, [opportunity.id])[opportunity.id]
        if sites and all(is_site_complete(site) for site in sites):
            derived = OpportunityStatus.COMPLETE
        else:
            derived = OpportunityStatus.ACTIVE
        opportunity.status_id = int(derived)
        observe_opportunity_status_recomputed(derived.label)
        logger.info(
            "opportunity.status_recomputed",
            extra={"operation": "opportunity.recompute_status", "entity_id": opportunity.id, "status": derived.label},
        )
        return derived

    def opportunity_stats(self, session: Session, actor: Actor) -> OpportunityStatsRead:
        try:
            with storage_boundary(session, "opportunity.stats"):
                stmt = select(Opportunity).where(Opportunity.is_deleted.is_(False))
                stmt = _policy(session).apply_owner_scope(stmt, Opportunity.assigned_to, actor)
                opportunities = session.scalars(stmt).all()
                sites = _live_sites(session, [item.id for item in opportunities])
                stats = compute_opportunity_stats(opportunities, sites)
        except OperationFailed:
            stats = OpportunityStats()
        return OpportunityStatsRead.model_validate(stats)

    def list_opportunity_statuses(self) -> list[StatusRead]:
        return _status_reads(OpportunityStatus)

    def load_visible(
        self,
        session: Session,
        policy: AccessPolicy,
        actor: Actor,
        opportunity_id: int,
        include_deleted: bool = False,
    ) -> Opportunity:
        opportunity = session.get(Opportunity, opportunity_id)
        if opportunity is None or (opportunity.is_deleted and not include_deleted):
            raise NotFoundOrDenied("opportunity not found")
        if not policy.can_access(actor, opportunity.assigned_to):
            policy.record_denied(actor, self.entity_type, opportunity_id)
            raise NotFoundOrDenied("opportunity not found")
        return opportunity

    def _apply_update(
        self,
        policy: AccessPolicy,
        actor: Actor,
        opportunity: Opportunity,
        dto: OpportunityUpdate,
    ) -> None:
        opportunity.owner_name = dto.owner_name
        opportunity.owner_address = dto.owner_address
        requested = dto.assigned_to
        if requested is None or requested == opportunity.assigned_to:
            return
        if _reassignment_allowed(policy, actor, requested):
            opportunity.assigned_to = requested
        else:
            logger.info(
                "opportunity.reassignment_ignored",
                extra={"operation": "opportunity.update", "entity_id": opportunity.id, "actor_id": actor.user_id},
            )

    def _list_assigned_to(self, session: Session, owner_ids: set[int], operation: str) -> list[OpportunityRead]:
        try:
            with storage_boundary(session, operation):
                stmt = (
                    select(Opportunity)
                    .where(Opportunity.assigned_to.in_(owner_ids), Opportunity.is_deleted.is_(False))
                    .order_by(Opportunity.updated_at.desc(), Opportunity.id.desc())
                )
                return self._to_reads(session, session.scalars(stmt).all())
        except OperationFailed:
            return []

    def _to_read(self, session: Session, opportunity: Opportunity) -> OpportunityRead:
        return self._to_reads(session, [opportunity])[0]

    def _to_reads(self, session: Session, opportunities: Sequence[Opportunity]) -> list[OpportunityRead]:
        if not opportunities:
            return []
        sites_by_opportunity = _live_sites(session, [item.id for item in opportunities])
        names = _user_names(
            session,
            [user_id for item in opportunities for user_id in (item.assigned_to, item.created_by)],
        )
        lead_names = {
            row.id: row.name
            for row in session.execute(
                select(Lead.id, Lead.name).where(Lead.id.in_([item.lead_id for item in opportunities]))
            ).all()
        }
        station_types = _station_type_names(session)

        results: list[OpportunityRead] = []
        for item in opportunities:
            sites = sites_by_opportunity[item.id]
            complete = sum(1 for site in sites if is_site_complete(site))
            results.append(
                OpportunityRead(
                    id=item.id,
                    lead_id=item.lead_id,
                    lead_name=lead_names.get(item.lead_id),
                    owner_name=item.owner_name,
                    owner_address=item.owner_address,
                    status_id=item.status_id,
                    status_name=OpportunityStatus(item.status_id).label,
                    assigned_to=item.assigned_to,
                    assigned_to_name=names.get(item.assigned_to),
                    created_by=item.created_by,
                    created_by_name=names.get(item.created_by),
                    total_stations=len(sites),
                    complete_stations=complete,
                    incomplete_stations=len(sites) - complete,
                    completion_percentage=completion_percentage(sites),
                    stations=[_site_read(site, station_types) for site in sites],
                    is_deleted=item.is_deleted,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                )
            )
        return results


class SiteService:
    """Site mutations; each one re-derives the owning opportunity's status in the same commit."""

    entity_type = "crm.site"
    required_text_fields = ("station_name", "address")

    def __init__(self, opportunity_service: OpportunityService) -> None:
        self.opportunities = opportunity_service

    def add_site(self, session: Session, actor: Actor, opportunity_id: int, dto: SiteCreate) -> SiteRead:
        with storage_boundary(session, "site.create"):
            opportunity = self.opportunities.load_visible(session, _policy(session), actor, opportunity_id)
            self._check_station_type(session, dto.station_type_id)
            site = Site(
                opportunity_id=opportunity.id,
                station_name=dto.station_name,
                address=dto.address,
                poc_name=dto.poc_name or None,
                poc_phone=dto.poc_phone or None,
                poc_email=str(dto.poc_email) if dto.poc_email is not None else None,
                number_of_pumps=dto.number_of_pumps,
                number_of_employees=dto.number_of_employees,
                station_type_id=dto.station_type_id,
                notes=dto.notes,
                created_by=actor.user_id,
            )
            session.add(site)
            session.flush()
            self.opportunities.apply_derived_status(session, opportunity)
            session.commit()
            observe_site_change("created")
            logger.info(
                "site.created",
                extra={"operation": "site.create", "entity_id": site.id, "actor_id": actor.user_id},
            )
            return _site_read(site, _station_type_names(session))

    def update_site(self, session: Session, actor: Actor, site_id: int, dto: SiteUpdate) -> SiteRead:
        with storage_boundary(session, "site.update"):
            site, opportunity = self._load_visible(session, actor, site_id)
            payload = dto.model_dump(exclude_unset=True)
            if payload.get("station_type_id") is not None:
                self._check_station_type(session, payload["station_type_id"])

            for field_name, value in payload.items():
                if field_name in self.required_text_fields:
                    if value:
                        setattr(site, field_name, value)
                elif isinstance(value, str):
                    setattr(site, field_name, value or None)
                else:
                    setattr(site, field_name, value)

            session.flush()
            self.opportunities.apply_derived_status(session, opportunity)
            session.commit()
            observe_site_change("updated")
            return _site_read(site, _station_type_names(session))

    def delete_site(self, session: Session, actor: Actor, site_id: int) -> None:
        with storage_boundary(session, "site.delete"):
            site, opportunity = self._load_visible(session, actor, site_id)
            site.is_deleted = True
            session.flush()
            self.opportunities.apply_derived_status(session, opportunity)
            session.commit()
            observe_site_change("deleted")
            logger.info(
                "site.deleted",
                extra={"operation": "site.delete", "entity_id": site_id, "actor_id": actor.user_id},
            )

    def list_station_types(self, session: Session) -> list[StationTypeRead]:
        try:
            with storage_boundary(session, "station_type.list"):
                rows = session.scalars(select(StationType).order_by(StationType.id)).all()
                return [StationTypeRead.model_validate(row) for row in rows]
        except OperationFailed:
            return []

    def _load_visible(self, session: Session, actor: Actor, site_id: int) -> tuple[Site, Opportunity]:
        site = session.get(Site, site_id)
        if site is None or site.is_deleted:
            raise NotFoundOrDenied("site not found")
        opportunity = self.opportunities.load_visible(session, _policy(session), actor, site.opportunity_id)
        return site, opportunity

    def _check_station_type(self, session: Session, station_type_id: int | None) -> None:
        if station_type_id is None:
            return
        if session.get(StationType, station_type_id) is None:
            raise ValidationFailed("unknown station type", details={"station_type_id": station_type_id})
