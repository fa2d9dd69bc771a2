from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from gasopper_crm.crm.completeness import is_site_complete, percentage
from gasopper_crm.crm.models import Lead, LeadStatus, Opportunity, OpportunityStatus, Site


@dataclass
class LeadStats:
    total_leads: int = 0
    new_leads: int = 0
    converted_leads: int = 0
    conversion_rate: float = 0.0
    average_days_to_convert: int = 0
    status_breakdown: dict[str, int] = field(default_factory=lambda: {"New": 0, "Converted": 0})


@dataclass
class OpportunityStats:
    total_opportunities: int = 0
    active_opportunities: int = 0
    complete_opportunities: int = 0
    completion_rate: float = 0.0
    total_stations: int = 0
    complete_stations: int = 0
    station_completion_rate: float = 0.0
    average_stations_per_opportunity: float = 0.0
    average_days_to_complete: int = 0
    status_breakdown: dict[str, int] = field(default_factory=lambda: {"Active": 0, "Complete": 0})


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, truncated toward zero."""
    return int((_as_utc(end) - _as_utc(start)) / timedelta(days=1))


def _truncated_mean(values: Sequence[int]) -> int:
    if not values:
        return 0
    return int(sum(values) / len(values))


def compute_lead_stats(
    leads: Iterable[Lead],
    opportunity_created_at: dict[int, datetime],
) -> LeadStats:
    """Aggregate over already-visible, non-deleted leads.

    ``opportunity_created_at`` maps lead id to the creation time of its linked
    opportunity; leads without an entry are left out of the days-to-convert average.
    """
    items = list(leads)
    total = len(items)
    new = sum(1 for lead in items if lead.status_id == LeadStatus.NEW)
    converted = sum(1 for lead in items if lead.status_id == LeadStatus.CONVERTED)
    days = [
        whole_days_between(lead.created_at, opportunity_created_at[lead.id])
        for lead in items
        if lead.id in opportunity_created_at
    ]
    return LeadStats(
        total_leads=total,
        new_leads=new,
        converted_leads=converted,
        conversion_rate=percentage(converted, total),
        average_days_to_convert=_truncated_mean(days),
        status_breakdown={"New": new, "Converted": converted},
    )


def compute_opportunity_stats(
    opportunities: Iterable[Opportunity],
    sites_by_opportunity: dict[int, list[Site]],
) -> OpportunityStats:
    items = list(opportunities)
    total = len(items)
    active = sum(1 for item in items if item.status_id == OpportunityStatus.ACTIVE)
    complete = sum(1 for item in items if item.status_id == OpportunityStatus.COMPLETE)

    all_sites = [site for item in items for site in sites_by_opportunity.get(item.id, [])]
    complete_sites = sum(1 for site in all_sites if is_site_complete(site))
    days = [
        whole_days_between(item.created_at, item.updated_at)
        for item in items
        if item.status_id == OpportunityStatus.COMPLETE
    ]
    return OpportunityStats(
        total_opportunities=total,
        active_opportunities=active,
        complete_opportunities=complete,
        completion_rate=percentage(complete, total),
        total_stations=len(all_sites),
        complete_stations=complete_sites,
        station_completion_rate=percentage(complete_sites, len(all_sites)),
        average_stations_per_opportunity=round(len(all_sites) / total, 1) if total else 0.0,
        average_days_to_complete=_truncated_mean(days),
        status_breakdown={"Active": active, "Complete": complete},
    )
