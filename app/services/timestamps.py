"""
Per-host last-transition timestamps.
"""
import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from app.models.schemas import HostReview
from app.services.registry import HostRoster

logger = logging.getLogger(__name__)


class StatusTimestampTracker:
    """
    Stamps a host's `updated_at` whenever that host's status changes.

    The tracker is bound to one roster version and must be regenerated when
    a new roster is published; hosts it does not know are left unstamped.
    """

    def __init__(self, roster: Optional[HostRoster] = None) -> None:
        self._fields: Dict[int, str] = {}
        self._version = 0
        if roster is not None:
            self.rebuild(roster)

    def rebuild(self, roster: HostRoster) -> None:
        """Regenerate the tracked field set from a roster."""
        self._fields = {host.id: host.bindings.timestamp_field for host in roster}
        self._version = roster.version
        logger.debug(
            f"Timestamp tracker regenerated for roster v{roster.version}: "
            f"{sorted(self._fields.values())}"
        )

    @property
    def version(self) -> int:
        return self._version

    @property
    def tracked_host_ids(self) -> Tuple[int, ...]:
        return tuple(sorted(self._fields))

    def field_for(self, host_id: int) -> Optional[str]:
        return self._fields.get(host_id)

    def stamp(
        self,
        before: Optional[HostReview],
        after: HostReview,
        now: datetime,
    ) -> HostReview:
        """Return `after`, stamped with `now` if its status differs from `before`."""
        if after.host_id not in self._fields:
            return after
        previous = before.status if before is not None else None
        if previous == after.status:
            return after
        return after.model_copy(update={"updated_at": now})
