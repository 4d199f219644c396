"""In-memory log of diver-reported clarity observations."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from clarity.core.site import SiteDatabase
from clarity.units import utcnow


logger = logging.getLogger(__name__)

CLARITY_NOTES = ("crystal", "good", "ok", "murky")
MAX_OBSERVATIONS = 1000
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


@dataclass(frozen=True)
class Observation:
    """A diver's report of actual conditions."""
    id: str
    time: datetime
    site_id: str
    secchi_meters: Optional[float] = None  # Secchi disk depth
    clarity_note: Optional[str] = None
    photo_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ts": self.time.isoformat(),
            "siteId": self.site_id,
            "secchiMeters": self.secchi_meters,
            "clarityNote": self.clarity_note,
            "photoUrl": self.photo_url,
        }


class ObservationLog:
    """Newest-first observation store, capped at MAX_OBSERVATIONS."""

    def __init__(
        self,
        site_db: SiteDatabase,
        max_size: int = MAX_OBSERVATIONS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.site_db = site_db
        self.max_size = max_size
        self.clock = clock
        self._observations: list[Observation] = []

    def add(
        self,
        site_id: str,
        secchi_meters: Optional[float] = None,
        clarity_note: Optional[str] = None,
        photo_url: Optional[str] = None,
        time: Optional[datetime] = None,
    ) -> Observation:
        """Record an observation.

        Raises:
            UnknownSiteError: If the site is not in the registry
            ValueError: On a negative Secchi depth or unknown clarity note
        """
        self.site_db.require_site(site_id)

        if secchi_meters is not None and secchi_meters < 0:
            raise ValueError("secchi_meters must be non-negative")
        if clarity_note is not None and clarity_note not in CLARITY_NOTES:
            raise ValueError(f"clarity_note must be one of {', '.join(CLARITY_NOTES)}")

        observation = Observation(
            id=f"obs_{uuid.uuid4().hex[:12]}",
            time=time or self.clock(),
            site_id=site_id,
            secchi_meters=secchi_meters,
            clarity_note=clarity_note,
            photo_url=photo_url,
        )

        self._observations.insert(0, observation)
        del self._observations[self.max_size:]

        logger.info(f"Recorded observation {observation.id} for {site_id}")
        return observation

    def recent(self, site_id: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> list[Observation]:
        """Newest observations first, optionally for one site."""
        limit = min(max(0, limit), MAX_LIST_LIMIT)
        observations = self._observations
        if site_id:
            observations = [o for o in observations if o.site_id == site_id]
        return observations[:limit]

    def __len__(self) -> int:
        return len(self._observations)
