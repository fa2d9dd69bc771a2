from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from gasopper_crm.crm.models import StationType


logger = logging.getLogger("gasopper.crm")

DEFAULT_STATION_TYPES = ("Gas Station", "Truck Stop", "Convenience Store", "Travel Center")


def seed_station_types(session: Session) -> int:
    """Insert any missing default station types and return how many were added."""
    existing = set(session.scalars(select(StationType.name)).all())
    added = 0
    for name in DEFAULT_STATION_TYPES:
        if name in existing:
            continue
        session.add(StationType(name=name))
        added += 1
    if added:
        session.commit()
        logger.info("station_types.seeded", extra={"operation": "station_type.seed", "status": str(added)})
    return added
