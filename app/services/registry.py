"""
Host registry.
Publishes the set of reviewing hosts as an explicitly loaded, versioned
roster instead of answering ad hoc lookups per call.
"""
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from app.core.exceptions import UnknownHostError
from app.models.interfaces import HostRepository
from app.models.schemas import Host, utcnow

logger = logging.getLogger(__name__)

RosterListener = Callable[["HostRoster"], None]


class HostRoster:
    """
    Immutable snapshot of the active, fully provisioned hosts.

    Unprovisioned or deactivated hosts are never part of a roster, so the
    review workflow cannot observe a host whose fields do not exist yet.
    """

    def __init__(self, version: int, hosts: Iterable[Host]) -> None:
        self._version = version
        self._hosts: Dict[int, Host] = {
            host.id: host
            for host in sorted(hosts, key=lambda h: h.id)
            if host.is_visible
        }

    @property
    def version(self) -> int:
        return self._version

    @property
    def hosts(self) -> Tuple[Host, ...]:
        return tuple(self._hosts.values())

    @property
    def host_ids(self) -> Tuple[int, ...]:
        return tuple(self._hosts.keys())

    def get(self, host_id: int) -> Optional[Host]:
        return self._hosts.get(host_id)

    def require(self, host_id: int) -> Host:
        """
        Look up an active host.

        Raises:
            UnknownHostError: host is unknown, inactive or not provisioned
        """
        host = self._hosts.get(host_id)
        if host is None:
            raise UnknownHostError(host_id)
        return host

    def __contains__(self, host_id: object) -> bool:
        return host_id in self._hosts

    def __iter__(self) -> Iterator[Host]:
        return iter(self._hosts.values())

    def __len__(self) -> int:
        return len(self._hosts)

    def __repr__(self) -> str:
        return f"HostRoster(version={self._version}, hosts={list(self._hosts)})"


class HostRegistry:
    """
    Owner of the current HostRoster.

    Subscribers are notified synchronously whenever a new roster version is
    published, e.g. after a host finished provisioning or was deactivated.
    """

    def __init__(
        self,
        host_repo: HostRepository,
        initial_hosts: Iterable[Host] = (),
    ) -> None:
        self._host_repo = host_repo
        self._roster = HostRoster(1, initial_hosts)
        self._listeners: List[RosterListener] = []

    def current(self) -> HostRoster:
        """Latest published roster."""
        return self._roster

    def subscribe(self, listener: RosterListener) -> None:
        """Register a listener and hand it the current roster right away."""
        self._listeners.append(listener)
        listener(self._roster)

    async def snapshot(self) -> HostRoster:
        """
        Build the roster storage currently describes, without publishing it.
        Read inside a transaction to see that transaction's writes.
        """
        hosts = await self._host_repo.list_all()
        return HostRoster(self._roster.version + 1, hosts)

    def publish(self, roster: HostRoster) -> HostRoster:
        """
        Make `roster` current and notify subscribers.

        If a subscriber fails, the previous roster is restored and handed
        back to every subscriber before the error propagates.

        Args:
            roster: Snapshot to publish; renumbered if a newer one went out meanwhile

        Returns:
            The published roster
        """
        previous = self._roster
        if roster.version <= previous.version:
            roster = HostRoster(previous.version + 1, roster.hosts)

        self._roster = roster
        try:
            for listener in self._listeners:
                listener(roster)
        except Exception:
            self._roster = previous
            for listener in self._listeners:
                listener(previous)
            logger.error(f"Host roster v{roster.version} rejected, kept v{previous.version}")
            raise

        logger.info(
            f"Host roster v{roster.version} published: "
            f"hosts={list(roster.host_ids)}"
        )
        return roster

    async def reload(self) -> HostRoster:
        """Rebuild the roster from storage and publish it as a new version."""
        return self.publish(await self.snapshot())

    async def get(self, host_id: int) -> Optional[Host]:
        """Any host, including inactive ones."""
        return await self._host_repo.get(host_id)

    async def list_hosts(self, include_inactive: bool = False) -> List[Host]:
        hosts = await self._host_repo.list_all()
        if include_inactive:
            return hosts
        return [host for host in hosts if host.is_visible]

    async def deactivate(self, host_id: int) -> Host:
        """
        Soft-delete a host in storage. Its per-video data is kept for history.
        The roster is not republished here; callers publish once their
        transaction has committed.

        Raises:
            UnknownHostError: no host with this id
        """
        host = await self._host_repo.get(host_id)
        if host is None:
            raise UnknownHostError(host_id)

        if host.active or host.deactivated_at is None:
            host = host.model_copy(update={"active": False, "deactivated_at": utcnow()})
            await self._host_repo.save(host)
            logger.info(f"Host {host_id} deactivated", extra={"host_id": host_id})
        return host
