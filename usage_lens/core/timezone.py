"""
Timezone resolution for bucketing.

Converts UTC instants into a chosen zone's calendar date and hour. When the
zone or the timestamp cannot be converted the resolver falls back to reading
the timestamp as already-local wall-clock time. Fallbacks change bucketing
silently, so every one is counted and logged with a ``timezone fallback:``
prefix.
"""

import copy
import logging
import re
from datetime import date, datetime, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from usage_lens.storage.parser import parse_timestamp

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime]

_LOCAL_PREFIX = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})(?:[T ](\d{2}))?")


def load_zone(name: Optional[str]) -> Optional[tzinfo]:
    """Load an IANA zone, returning None when it does not resolve."""
    if name is None:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning("timezone fallback: unknown zone %r (%s); timestamps are read as local", name, e)
        return None


class TimezoneResolver:
    """Maps UTC timestamps onto a zone's date keys and hours.

    ``zone_name=None`` selects the system zone, applied per instant so that
    DST transitions are honoured.
    """

    def __init__(self, zone_name: Optional[str] = None):
        self.zone_name = zone_name
        self._zone = load_zone(zone_name)
        self._invalid_zone = zone_name is not None and self._zone is None
        self.fallback_count = 0

    def fork(self) -> "TimezoneResolver":
        """Same zone, own fallback counter; for work on another thread."""
        forked = copy.copy(self)
        forked.fallback_count = 0
        return forked

    @property
    def is_fallback(self) -> bool:
        """True when the configured zone could not be loaded."""
        return self._invalid_zone

    def _record_fallback(self, reason: str, value: Timestamp) -> None:
        self.fallback_count += 1
        if self.fallback_count == 1:
            logger.warning("timezone fallback: %s for %r; reading as local time", reason, value)
        else:
            logger.debug("timezone fallback: %s for %r", reason, value)

    def local_datetime(self, ts: Timestamp) -> Optional[datetime]:
        """Convert a timestamp into the resolver's zone.

        Returns a naive datetime holding local wall-clock time, or None when
        nothing usable can be read from the value.
        """
        if isinstance(ts, datetime):
            instant = ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)
        else:
            instant = parse_timestamp(ts)
            if instant is None:
                return self._fallback_from_text(ts)

        if self._invalid_zone:
            self._record_fallback("invalid zone %r" % self.zone_name, ts)
            return instant.astimezone(timezone.utc).replace(tzinfo=None)

        try:
            if self._zone is None:
                return instant.astimezone().replace(tzinfo=None)
            return instant.astimezone(self._zone).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError) as e:
            self._record_fallback("conversion failed (%s)" % e, ts)
            return instant.replace(tzinfo=None)

    def _fallback_from_text(self, value: Timestamp) -> Optional[datetime]:
        if not isinstance(value, str):
            return None
        match = _LOCAL_PREFIX.match(value)
        if match is None:
            return None
        year, month, day, hour = match.groups()
        try:
            local = datetime(int(year), int(month), int(day), int(hour or 0))
        except ValueError:
            return None
        self._record_fallback("unparseable timestamp", value)
        return local

    def local_date(self, ts: Timestamp) -> Optional[date]:
        local = self.local_datetime(ts)
        return local.date() if local is not None else None

    def local_date_key(self, ts: Timestamp) -> Optional[str]:
        """Zero-padded ``YYYY-MM-DD`` key of the local calendar day."""
        local = self.local_datetime(ts)
        return local.date().isoformat() if local is not None else None

    def local_hour(self, ts: Timestamp) -> Optional[int]:
        """Local hour of day, 0-23."""
        local = self.local_datetime(ts)
        return local.hour if local is not None else None
