"""Derived completeness of installation sites.

A site is complete when its point of contact, pump count, employee count and
station type are all filled in. ``missing_site_fields`` is the single source
of truth: ``is_site_complete`` is exactly "nothing missing".
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol


class SiteLike(Protocol):
    poc_name: str | None
    poc_phone: str | None
    number_of_pumps: int | None
    number_of_employees: int | None
    station_type_id: int | None


def missing_site_fields(site: SiteLike) -> list[str]:
    missing: list[str] = []
    if not site.poc_name:
        missing.append("POC Name")
    if not site.poc_phone:
        missing.append("POC Phone")
    if site.number_of_pumps is None:
        missing.append("Number of Pumps")
    if site.number_of_employees is None:
        missing.append("Number of Employees")
    if site.station_type_id is None:
        missing.append("Station Type")
    return missing


def is_site_complete(site: SiteLike) -> bool:
    return not missing_site_fields(site)


def completion_percentage(sites: Iterable[SiteLike]) -> float:
    items = list(sites)
    if not items:
        return 0.0
    complete = sum(1 for site in items if is_site_complete(site))
    return percentage(complete, len(items))


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)
