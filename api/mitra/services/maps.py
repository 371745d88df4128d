"""
Map helpers for the task card.

Coordinates only ever feed the map embed and the directions link. A job
without coordinates renders around the default centre and is otherwise
handled exactly like any other job.
"""

from urllib.parse import quote_plus

from mitra.config import settings
from mitra.schemas import Job

GOOGLE_DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination="
OSM_EMBED_URL = "https://www.openstreetmap.org/export/embed.html"

# Half-width of the embedded map window, in degrees (~1 km)
EMBED_SPAN = 0.01


def map_center(job: Job | None) -> tuple[float, float, bool]:
    """(lat, lng, is_fallback) to centre the map on."""
    if job is not None and job.has_coordinates:
        return job.latitude, job.longitude, False
    return settings.DEFAULT_MAP_LAT, settings.DEFAULT_MAP_LNG, True


def directions_url(job: Job) -> str | None:
    """Turn-by-turn link for the agent; falls back to the address text."""
    if job.has_coordinates:
        return f"{GOOGLE_DIRECTIONS_URL}{job.latitude},{job.longitude}"
    if job.address:
        return f"{GOOGLE_DIRECTIONS_URL}{quote_plus(job.address)}"
    return None


def embed_url(job: Job | None) -> str:
    lat, lng, fallback = map_center(job)
    bbox = f"{lng - EMBED_SPAN},{lat - EMBED_SPAN},{lng + EMBED_SPAN},{lat + EMBED_SPAN}"
    url = f"{OSM_EMBED_URL}?bbox={quote_plus(bbox)}&layer=mapnik"
    if not fallback:
        url += f"&marker={lat},{lng}"
    return url
