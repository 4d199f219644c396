"""Site model and registry loader.

Loads site definitions from sites.yaml. The registry is an immutable
lookup table: sites are loaded once and never mutated at runtime.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml


@dataclass(frozen=True)
class Coordinates:
    """Geographic coordinates."""
    lat: float
    lon: float


@dataclass(frozen=True)
class Site:
    """A clarity forecast site."""
    id: str
    name: str
    coordinates: Coordinates
    shoreline_bearing_toward_shore: float  # Degrees, from sea toward shore
    exposure: float  # 0-1: how exposed to open water (scales wave impact)
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "lat": self.coordinates.lat,
            "lon": self.coordinates.lon,
            "shorelineBearingTowardShore": self.shoreline_bearing_toward_shore,
            "exposure": self.exposure,
            "notes": self.notes,
        }


class UnknownSiteError(KeyError):
    """Raised when a site id is not in the registry."""

    pass


class SiteDatabase:
    """Registry of sites loaded from YAML."""

    def __init__(
        self,
        sites_path: Optional[Path] = None,
        sites: Optional[list[Site]] = None,
    ):
        """Initialize the site registry.

        Args:
            sites_path: Path to sites.yaml. Defaults to config/sites.yaml.
            sites: Explicit site list; skips loading YAML when given.
        """
        self._sites: dict[str, Site] = {}

        if sites is not None:
            self.sites_path = None
            for site in sites:
                self._sites[site.id] = site
            return

        if sites_path is None:
            possible_paths = [
                Path(__file__).parent.parent.parent / "config" / "sites.yaml",
                Path.cwd() / "config" / "sites.yaml",
            ]
            for path in possible_paths:
                if path.exists():
                    sites_path = path
                    break

        if sites_path is None or not sites_path.exists():
            raise FileNotFoundError("Could not find sites.yaml")

        self.sites_path = sites_path
        self._load_sites()

    def _load_sites(self) -> None:
        """Load sites from YAML file."""
        with open(self.sites_path) as f:
            data = yaml.safe_load(f) or {}

        for site_data in data.get("sites", []):
            site = self._parse_site(site_data)
            self._sites[site.id] = site

    def _parse_site(self, data: dict) -> Site:
        """Parse a site dictionary into a Site object."""
        coords = data.get("coordinates", {})
        exposure = float(data.get("exposure", 1.0))
        if not 0 <= exposure <= 1:
            raise ValueError(f"Site {data.get('id')}: exposure must be within 0-1, got {exposure}")

        return Site(
            id=data["id"],
            name=data.get("name", data["id"]),
            coordinates=Coordinates(
                lat=float(coords.get("lat", 0)),
                lon=float(coords.get("lon", 0)),
            ),
            shoreline_bearing_toward_shore=float(data.get("shoreline_bearing_toward_shore", 0)) % 360,
            exposure=exposure,
            notes=data.get("notes", ""),
        )

    def get_site(self, site_id: str) -> Optional[Site]:
        """Get a site by ID, or None if not found."""
        return self._sites.get(site_id)

    def require_site(self, site_id: str) -> Site:
        """Get a site by ID, raising UnknownSiteError if missing."""
        site = self._sites.get(site_id)
        if site is None:
            raise UnknownSiteError(site_id)
        return site

    def get_all_sites(self) -> list[Site]:
        """Get all sites in registry order."""
        return list(self._sites.values())

    @property
    def site_count(self) -> int:
        return len(self._sites)


_default_db: Optional[SiteDatabase] = None


def get_site_database() -> SiteDatabase:
    """Get the default site database (singleton)."""
    global _default_db
    if _default_db is None:
        _default_db = SiteDatabase()
    return _default_db
