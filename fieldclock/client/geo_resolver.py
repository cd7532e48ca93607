"""
Zone resolution for FieldClock captures.
"""

from typing import Optional

from fieldclock.shared.logging_config import get_sync_logger
from fieldclock.shared.models import ZoneResult

logger = get_sync_logger()


def resolve_zone(remote, lat: float, lon: float) -> Optional[ZoneResult]:
    """Resolve the zone enclosing (lat, lon) through the remote point lookup.

    Returns None on a transport error, a lookup miss, an empty result or a row
    lacking either identifier. Never raises: a None result does not tell
    "outside every zone" apart from "could not check", so callers must have
    confirmed connectivity before reading it as the former.
    """
    try:
        rows = remote.lookup_zone(lat, lon)
    except Exception as e:
        logger.warning(f"Zone lookup error for ({lat}, {lon}): {e}")
        return None

    if not rows:
        return None

    first = rows[0]
    code = first.get('hac_ste')
    name = first.get('nom')
    if code is None or name is None:
        logger.debug(f"Zone lookup for ({lat}, {lon}) returned an incomplete row: {first}")
        return None

    return ZoneResult(code=str(code), name=str(name))
