"""
Schema evolution.
Introduces a new host at runtime: register it, provision its per-video
fields, seed its pending queue, then publish it in a new roster.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set, Tuple

from app.core.exceptions import (
    FieldCollisionError,
    InvalidInputError,
    ProvisioningFailedError,
)
from app.core.telemetry import HOST_PROVISIONING
from app.models.interfaces import (
    Database,
    HostRepository,
    ReviewRepository,
    VideoRepository,
)
from app.models.schemas import (
    Host,
    HostBindings,
    HostReview,
    HostStatus,
    ProvisioningReport,
    SchemaField,
    utcnow,
)
from app.services.registry import HostRegistry, HostRoster

logger = logging.getLogger(__name__)

# Columns of the video record that host bindings may never shadow
RESERVED_FIELDS = frozenset({
    "id",
    "person_id",
    "added_by",
    "link",
    "url",
    "video_code",
    "type",
    "likes_count",
    "pitch",
    "relevance_rating",
    "score",
    "taken_by",
    "created_at",
    "link_added_on",
    "status",
})


class SchemaEvolutionService:
    """
    Adds hosts without downtime.

    Steps:
    1. Register the host (active, not yet provisioned, so invisible)
    2. Ensure its status, note, external id and timestamp fields exist
    3. Seed pending rows wherever the reference host is pending
    4. Mark it provisioned and publish a new roster

    Seeding and marking the host provisioned commit as one transaction; the
    roster is published only after that commit. Every step is idempotent, so
    a failed run is completed by calling `register_host` again with the same
    id and bindings. A host deactivated mid-way is never brought back.
    """

    def __init__(
            self,
            db: Database,
            host_repo: HostRepository,
            review_repo: ReviewRepository,
            video_repo: VideoRepository,
            registry: HostRegistry,
            reference_host_id: Optional[int] = None,
            clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._host_repo = host_repo
        self._review_repo = review_repo
        self._video_repo = video_repo
        self._registry = registry
        self._reference_host_id = reference_host_id
        self._clock = clock
        self._lock = asyncio.Lock()

    async def register_host(
            self,
            name: str,
            host_id: Optional[int] = None,
            bindings: Optional[HostBindings] = None,
    ) -> ProvisioningReport:
        """
        Introduce a host and make it visible once fully provisioned.

        Args:
            name: Display name
            host_id: Explicit id; defaults to the next free id
            bindings: Field names for the host; defaults to `default_for(host_id)`

        Returns:
            ProvisioningReport describing what was created or already existed

        Raises:
            FieldCollisionError: a binding is reserved or owned by another host
            InvalidInputError: the id belongs to a deactivated host or to a
                host with different bindings, or the host was deactivated
                while being provisioned
            ProvisioningFailedError: a storage step failed; the host stays
                invisible and the call may be retried
        """
        async with self._lock:
            if host_id is None:
                host_id = await self._host_repo.next_id()
            bindings = bindings or HostBindings.default_for(host_id)

            existing = await self._host_repo.get(host_id)
            if existing is not None:
                self._check_reuse(existing, bindings)
                if existing.is_visible:
                    logger.info(
                        f"Host {host_id} already provisioned",
                        extra={"host_id": host_id},
                    )
                    return ProvisioningReport(
                        host=existing,
                        fields_existing=list(existing.bindings.fields().values()),
                        roster_version=self._registry.current().version,
                        already_provisioned=True,
                    )

            await self._check_collisions(host_id, bindings)

            # Step 1: register, invisible until provisioned
            host = (existing or Host(id=host_id, name=name, bindings=bindings)).model_copy(
                update={"name": name, "active": True, "provisioned": False}
            )
            async with self._db.transaction():
                await self._host_repo.save(host)

            step = "ensure_fields"
            try:
                fields_added, fields_existing = await self._ensure_fields(host)

                step = "seed_statuses"
                async with self._db.transaction():
                    host = await self._require_registered(host_id)
                    seeded = await self._seed_pending(host)
                    host = host.model_copy(update={"provisioned": True})
                    await self._host_repo.save(host)
                    roster = await self._registry.snapshot()

                # Published only after commit so a rollback never leaks the host
                step = "publish_roster"
                roster = self._registry.publish(roster)

            except FieldCollisionError:
                await self._mark_failed(host_id)
                HOST_PROVISIONING.labels(outcome="collision").inc()
                raise
            except InvalidInputError as e:
                HOST_PROVISIONING.labels(outcome="failed").inc()
                logger.warning(e.message, extra={"host_id": host_id})
                raise
            except Exception as e:
                await self._mark_failed(host_id)
                HOST_PROVISIONING.labels(outcome="failed").inc()
                logger.error(
                    f"Provisioning failed: host={host_id}, step={step}, error={str(e)}",
                    extra={"host_id": host_id},
                )
                raise ProvisioningFailedError(host_id, step, str(e)) from e

        HOST_PROVISIONING.labels(outcome="ok").inc()
        logger.info(
            f"Host {host_id} provisioned: fields_added={fields_added}, "
            f"seeded_pending={seeded}, roster=v{roster.version}",
            extra={"host_id": host_id},
        )
        return ProvisioningReport(
            host=host,
            fields_added=fields_added,
            fields_existing=fields_existing,
            seeded_pending=seeded,
            roster_version=roster.version,
        )

    @staticmethod
    def _check_reuse(existing: Host, bindings: HostBindings) -> None:
        if existing.deactivated_at is not None:
            raise InvalidInputError(
                f"Host id {existing.id} belonged to a deactivated host and cannot be reused",
                details={"host_id": existing.id},
            )
        if existing.bindings != bindings:
            raise InvalidInputError(
                f"Host {existing.id} is already registered with different field bindings",
                details={
                    "host_id": existing.id,
                    "bindings": existing.bindings.model_dump(),
                },
            )

    async def _check_collisions(self, host_id: int, bindings: HostBindings) -> None:
        """Reject bindings that are reserved or belong to any other host."""
        names = bindings.fields()
        wanted: Set[str] = set(names.values())

        for name in names.values():
            if name in RESERVED_FIELDS:
                raise FieldCollisionError(name)
            field = await self._host_repo.get_field(name)
            if field is not None and field.host_id != host_id:
                raise FieldCollisionError(name, field.host_id)

        # Bindings of hosts whose fields were never provisioned still count
        for other in await self._host_repo.list_all():
            if other.id == host_id:
                continue
            clash = wanted & set(other.bindings.fields().values())
            if clash:
                raise FieldCollisionError(sorted(clash)[0], other.id)

    async def _ensure_fields(self, host: Host) -> Tuple[List[str], List[str]]:
        """Step 2: create each missing field; existing ones are left alone."""
        added: List[str] = []
        existing: List[str] = []

        for kind, name in host.bindings.fields().items():
            async with self._db.transaction():
                created = await self._host_repo.ensure_field(
                    SchemaField(name=name, kind=kind, host_id=host.id)
                )
            (added if created else existing).append(name)

        return added, existing

    async def _seed_pending(self, host: Host) -> int:
        """
        Step 3: copy the reference host's pending entries to the new host.
        Rows that already carry a status are never overwritten.
        """
        reference = self._reference_host(self._registry.current(), exclude=host.id)
        if reference is None:
            logger.info(f"No reference host; nothing seeded for host {host.id}")
            return 0

        now = self._clock()
        seeded = 0
        for video in await self._video_repo.list_all():
            if not video.gate.is_open:
                continue

            current = await self._review_repo.get(video.id, host.id)
            if current is not None and current.status is not None:
                continue

            ref = await self._review_repo.get(video.id, reference)
            if ref is None or ref.status is not HostStatus.PENDING:
                continue

            row = (current or HostReview(video_id=video.id, host_id=host.id)).model_copy(
                update={"status": HostStatus.PENDING, "updated_at": now}
            )
            await self._review_repo.save(row)
            seeded += 1

        return seeded

    def _reference_host(self, roster: HostRoster, exclude: int) -> Optional[int]:
        """Configured reference host if active, else the lowest active host id."""
        candidates = [host_id for host_id in roster.host_ids if host_id != exclude]
        if not candidates:
            return None
        if self._reference_host_id in candidates:
            return self._reference_host_id
        return min(candidates)

    async def _require_registered(self, host_id: int) -> Host:
        """
        Re-read the host before it is marked provisioned.

        Raises:
            InvalidInputError: the host was deactivated while its fields
                were being provisioned
        """
        host = await self._host_repo.get(host_id)
        if host is None or not host.active or host.deactivated_at is not None:
            raise InvalidInputError(
                f"Host {host_id} was deactivated during provisioning",
                details={"host_id": host_id},
            )
        return host

    async def _mark_failed(self, host_id: int) -> None:
        """Keep a failed host invisible: inactive and unprovisioned."""
        async with self._db.transaction():
            host = await self._host_repo.get(host_id)
            if host is None or host_id in self._registry.current():
                return
            await self._host_repo.save(
                host.model_copy(update={"active": False, "provisioned": False})
            )
