from __future__ import annotations

from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gasopper_crm.core.database import Base
from gasopper_crm.core.errors import NotFoundOrDenied, OperationFailed, ValidationFailed
from gasopper_crm.crm.models import Opportunity, OpportunityStatus, Site, StationType
from gasopper_crm.crm.schemas import LeadConvertRequest, LeadCreate, OpportunityUpdate, SiteCreate, SiteUpdate
from gasopper_crm.crm.seed import seed_station_types
from gasopper_crm.crm.service import LeadService, OpportunityService, SiteService
from gasopper_crm.directory.models import Role, User
from gasopper_crm.security.context import Actor


ADMIN = Actor(user_id=1, role=Role.ADMIN)
MANAGER = Actor(user_id=5, role=Role.MANAGER)
SALESPERSON = Actor(user_id=10, role=Role.SALESPERSON)
OTHER_SALESPERSON = Actor(user_id=20, role=Role.SALESPERSON)


def _user(user_id: int, role: Role, manager_id: int | None = None) -> User:
    return User(
        id=user_id,
        employee_id=f"E{user_id:03d}",
        email=f"user{user_id}@gasopper.com",
        phone_number="555-0100",
        first_name="User",
        last_name=str(user_id),
        role_id=int(role),
        manager_id=manager_id,
        password_hash="not-a-real-hash",
        is_active=True,
    )


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    session.add_all(
        [
            _user(1, Role.ADMIN),
            _user(5, Role.MANAGER),
            _user(6, Role.MANAGER),
            _user(10, Role.SALESPERSON, manager_id=5),
            _user(20, Role.SALESPERSON, manager_id=6),
        ]
    )
    session.commit()
    seed_station_types(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def services() -> tuple[LeadService, OpportunityService, SiteService]:
    opportunities = OpportunityService()
    return LeadService(), opportunities, SiteService(opportunities)


def _station_type_id(session: Session) -> int:
    station_type_id = session.scalar(select(StationType.id).where(StationType.name == "Truck Stop"))
    assert station_type_id is not None
    return station_type_id


def _open_opportunity(session: Session, leads: LeadService, actor: Actor, name: str = "Acme Fuels") -> int:
    lead = leads.create_lead(
        session,
        actor,
        LeadCreate(
            name=name,
            phone_number="555-0199",
            email="owner@acmefuels.com",
            address="1 Main St",
            expected_stations=2,
        ),
    )
    converted = leads.convert_lead(
        session,
        actor,
        lead.id,
        LeadConvertRequest(owner_name="Acme", owner_address="1 Main St"),
    )
    assert converted.opportunity_id is not None
    return converted.opportunity_id


def _complete_site(session: Session, **overrides: Any) -> SiteCreate:
    values: dict[str, Any] = {
        "station_name": "North",
        "address": "10 Route 9",
        "poc_name": "Pat",
        "poc_phone": "555-0120",
        "number_of_pumps": 6,
        "number_of_employees": 4,
        "station_type_id": _station_type_id(session),
    }
    values.update(overrides)
    return SiteCreate(**values)


def test_seed_is_idempotent(db_session: Session) -> None:
    assert seed_station_types(db_session) == 0
    names = db_session.scalars(select(StationType.name).order_by(StationType.id)).all()
    assert names == ["Gas Station", "Truck Stop", "Convenience Store", "Travel Center"]


def test_manager_read_many_includes_team_excludes_others(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, _ = services
    own = _open_opportunity(db_session, leads, MANAGER, "Manager deal")
    team = _open_opportunity(db_session, leads, SALESPERSON, "Team deal")
    other = _open_opportunity(db_session, leads, OTHER_SALESPERSON, "Other deal")

    visible = {item.id for item in opportunities.list_opportunities(db_session, MANAGER)}

    assert visible == {own, team}
    assert other not in visible
    assert {item.id for item in opportunities.list_my_opportunities(db_session, MANAGER)} == {own}
    assert {item.id for item in opportunities.list_team_opportunities(db_session, MANAGER)} == {own, team}


def test_half_complete_sites_keep_opportunity_active(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, sites = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)
    sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session))
    sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session, number_of_pumps=None))

    status = opportunities.recompute_status(db_session, opportunity_id)
    read = opportunities.get_opportunity(db_session, SALESPERSON, opportunity_id)

    assert status is OpportunityStatus.ACTIVE
    assert read.status_id == int(OpportunityStatus.ACTIVE)
    assert read.completion_percentage == 50.0
    assert read.total_stations == 2
    assert read.complete_stations == 1
    assert read.incomplete_stations == 1
    incomplete = [station for station in read.stations if not station.is_complete]
    assert incomplete[0].missing_fields == ["Number of Pumps"]


def test_recompute_without_sites_is_active(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, _ = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)
    opportunities.update_opportunity_status(db_session, SALESPERSON, opportunity_id, int(OpportunityStatus.COMPLETE))

    assert opportunities.recompute_status(db_session, opportunity_id) is OpportunityStatus.ACTIVE


def test_recompute_is_idempotent(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, sites = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)
    sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session))

    first = opportunities.recompute_status(db_session, opportunity_id)
    second = opportunities.recompute_status(db_session, opportunity_id)

    assert first is second is OpportunityStatus.COMPLETE


def test_site_mutations_rederive_status(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, sites = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)

    site = sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session, poc_phone=None))
    assert site.is_complete is False
    assert db_session.get(Opportunity, opportunity_id).status_id == int(OpportunityStatus.ACTIVE)

    updated = sites.update_site(db_session, SALESPERSON, site.id, SiteUpdate(poc_phone="555-0177"))
    assert updated.is_complete is True
    assert db_session.get(Opportunity, opportunity_id).status_id == int(OpportunityStatus.COMPLETE)

    blocker = sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session, station_type_id=None))
    assert db_session.get(Opportunity, opportunity_id).status_id == int(OpportunityStatus.ACTIVE)

    sites.delete_site(db_session, SALESPERSON, blocker.id)
    assert db_session.get(Opportunity, opportunity_id).status_id == int(OpportunityStatus.COMPLETE)


def test_unknown_station_type_is_rejected(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, _, sites = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)

    with pytest.raises(ValidationFailed):
        sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session, station_type_id=999))


def test_sites_follow_opportunity_visibility(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, _, sites = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)
    site = sites.add_site(db_session, SALESPERSON, opportunity_id, _complete_site(db_session))

    with pytest.raises(NotFoundOrDenied):
        sites.add_site(db_session, OTHER_SALESPERSON, opportunity_id, _complete_site(db_session))
    with pytest.raises(NotFoundOrDenied):
        sites.update_site(db_session, OTHER_SALESPERSON, site.id, SiteUpdate(notes="x"))
    with pytest.raises(NotFoundOrDenied):
        sites.delete_site(db_session, OTHER_SALESPERSON, site.id)


def test_update_replaces_owner_fields(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, _ = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)

    updated = opportunities.update_opportunity(
        db_session,
        SALESPERSON,
        opportunity_id,
        OpportunityUpdate(owner_name="Beta Holdings", owner_address="9 Elm St", assigned_to=5),
    )

    assert updated.owner_name == "Beta Holdings"
    assert updated.owner_address == "9 Elm St"
    assert updated.assigned_to == 10


def test_assign_preserves_owner_fields(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, _ = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)

    assigned = opportunities.assign_opportunity(db_session, MANAGER, opportunity_id, 5)

    assert assigned.assigned_to == 5
    assert assigned.owner_name == "Acme"
    assert assigned.owner_address == "1 Main St"
    with pytest.raises(ValidationFailed):
        opportunities.assign_opportunity(db_session, MANAGER, opportunity_id, 20)


def test_manual_status_update_validates_value(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, _ = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)

    with pytest.raises(ValidationFailed):
        opportunities.update_opportunity_status(db_session, SALESPERSON, opportunity_id, 0)

    completed = opportunities.update_opportunity_status(
        db_session, SALESPERSON, opportunity_id, int(OpportunityStatus.COMPLETE)
    )
    assert completed.status_name == "Complete"
    reopened = opportunities.update_opportunity_status(
        db_session, SALESPERSON, opportunity_id, int(OpportunityStatus.ACTIVE)
    )
    assert reopened.status_name == "Active"


def test_opportunity_stats(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
) -> None:
    leads, opportunities, sites = services
    complete_id = _open_opportunity(db_session, leads, SALESPERSON, "Complete deal")
    active_id = _open_opportunity(db_session, leads, SALESPERSON, "Active deal")
    _open_opportunity(db_session, leads, OTHER_SALESPERSON, "Hidden deal")
    sites.add_site(db_session, SALESPERSON, complete_id, _complete_site(db_session))
    sites.add_site(db_session, SALESPERSON, active_id, _complete_site(db_session))
    sites.add_site(db_session, SALESPERSON, active_id, _complete_site(db_session, poc_name=None))

    stats = opportunities.opportunity_stats(db_session, SALESPERSON)

    assert stats.total_opportunities == 2
    assert stats.complete_opportunities == 1
    assert stats.active_opportunities == 1
    assert stats.completion_rate == 50.0
    assert stats.total_stations == 3
    assert stats.complete_stations == 2
    assert stats.station_completion_rate == 66.7
    assert stats.average_stations_per_opportunity == 1.5
    assert stats.average_days_to_complete == 0
    assert opportunities.opportunity_stats(db_session, ADMIN).total_opportunities == 3


def _fail_reads(session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_scalars(*args: Any, **kwargs: Any) -> Any:
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(session, "scalars", failing_scalars)


def _fail_commits(session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_commit() -> None:
        raise OperationalError("COMMIT", {}, Exception("disk full"))

    monkeypatch.setattr(session, "commit", failing_commit)


def test_lists_return_empty_on_storage_fault(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    leads, opportunities, _ = services
    _open_opportunity(db_session, leads, SALESPERSON)
    _fail_reads(db_session, monkeypatch)

    assert opportunities.list_opportunities(db_session, ADMIN) == []
    assert opportunities.list_my_opportunities(db_session, SALESPERSON) == []
    assert opportunities.list_team_opportunities(db_session, MANAGER) == []


def test_opportunity_stats_are_zeroed_on_storage_fault(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    leads, opportunities, _ = services
    _open_opportunity(db_session, leads, SALESPERSON)
    _fail_reads(db_session, monkeypatch)

    stats = opportunities.opportunity_stats(db_session, ADMIN)

    assert stats.total_opportunities == 0
    assert stats.active_opportunities == 0
    assert stats.total_stations == 0
    assert stats.completion_rate == 0.0
    assert stats.average_stations_per_opportunity == 0.0
    assert stats.status_breakdown == {"Active": 0, "Complete": 0}


def test_update_fails_without_partial_write_on_storage_fault(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    leads, opportunities, _ = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)

    _fail_commits(db_session, monkeypatch)
    with pytest.raises(OperationFailed):
        opportunities.update_opportunity(
            db_session,
            SALESPERSON,
            opportunity_id,
            OpportunityUpdate(owner_name="Beta Holdings", owner_address="9 Elm St"),
        )
    monkeypatch.undo()

    stored = db_session.get(Opportunity, opportunity_id)
    assert stored is not None
    assert stored.owner_name == "Acme"
    assert stored.owner_address == "1 Main St"


def test_add_site_fails_without_partial_write_on_storage_fault(
    db_session: Session,
    services: tuple[LeadService, OpportunityService, SiteService],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    leads, _, sites = services
    opportunity_id = _open_opportunity(db_session, leads, SALESPERSON)
    payload = _complete_site(db_session)

    _fail_commits(db_session, monkeypatch)
    with pytest.raises(OperationFailed):
        sites.add_site(db_session, SALESPERSON, opportunity_id, payload)
    monkeypatch.undo()

    assert db_session.scalar(select(func.count()).select_from(Site)) == 0
    stored = db_session.get(Opportunity, opportunity_id)
    assert stored is not None
    assert stored.status_id == int(OpportunityStatus.ACTIVE)
