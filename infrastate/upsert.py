"""
Idempotent upsert of a single record.

An UpsertTask describes one logical write. Its protocol decides how
create/update/patch are combined; dispatch lives in UpsertTask.run only.
Replaying a task is always safe: a create that hits an existing record takes
the update branch, a patch that hits a missing record takes the create branch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .errors import AlreadyExistsError, NotFoundError
from .models import Record, RecordPatch
from .store.base import RecordStore

logger = logging.getLogger(__name__)


class UpsertProtocol(str, Enum):
    """How an UpsertTask reaches the desired state."""
    CREATE_OR_UPDATE = "create_or_update"   # create, update when it already exists
    PATCH_OR_CREATE = "patch_or_create"     # merge-patch, create when it is missing
    PATCH_ONLY = "patch_only"               # merge-patch a record owned by someone else


@dataclass
class UpsertTask:
    """One idempotent write of one record."""

    name: str
    protocol: UpsertProtocol
    manifest: Optional[Callable[[], Record]] = None
    create: Optional[Callable[[Record], object]] = None
    update: Optional[Callable[[Record], object]] = None
    patch_data: Optional[Callable[[], RecordPatch]] = None
    patch: Optional[Callable[[RecordPatch], object]] = None

    def __post_init__(self):
        required = {
            UpsertProtocol.CREATE_OR_UPDATE: ("manifest", "create", "update"),
            UpsertProtocol.PATCH_OR_CREATE: ("manifest", "create", "patch_data", "patch"),
            UpsertProtocol.PATCH_ONLY: ("patch_data", "patch"),
        }[self.protocol]
        missing = [field for field in required if getattr(self, field) is None]
        if missing:
            raise ValueError(f"{self.name}: {self.protocol.value} requires {', '.join(missing)}")

    def run(self) -> None:
        """Execute the task once. Errors other than the protocol's fallback condition propagate."""
        if self.protocol == UpsertProtocol.CREATE_OR_UPDATE:
            self._create_or_update()
        elif self.protocol == UpsertProtocol.PATCH_OR_CREATE:
            self._patch_or_create()
        else:
            self.patch(self.patch_data())
            logger.debug(f"{self.name}: patched")

    def _create_or_update(self) -> None:
        record = self.manifest()
        try:
            self.create(record)
            logger.debug(f"{self.name}: created")
            return
        except AlreadyExistsError:
            logger.debug(f"{self.name}: already exists, updating")
        self.update(record)
        logger.debug(f"{self.name}: updated")

    def _patch_or_create(self) -> None:
        try:
            self.patch(self.patch_data())
            logger.debug(f"{self.name}: patched")
            return
        except NotFoundError:
            logger.debug(f"{self.name}: not found, creating")
        self.create(self.manifest())
        logger.debug(f"{self.name}: created")

    @classmethod
    def for_record(
        cls,
        store: RecordStore,
        name: str,
        record: Record,
        protocol: UpsertProtocol = UpsertProtocol.CREATE_OR_UPDATE,
        patch: Optional[Callable[[], RecordPatch]] = None,
        update_with_patch: bool = False,
    ) -> "UpsertTask":
        """
        Build a task writing one record through a RecordStore.

        Args:
            store: Store to write to
            name: Task name for logs and retry errors
            record: The full record
            protocol: Write protocol
            patch: Builds the minimal patch, required by patch protocols
            update_with_patch: Turn the update step into a merge-patch of the
                full record's data, so keys written by others survive

        Returns:
            UpsertTask bound to the store
        """
        def do_patch(patch_data: RecordPatch):
            return store.merge_patch(record.kind, record.namespace, record.name, patch_data)

        if update_with_patch:
            def do_update(manifest: Record):
                return store.merge_patch(
                    manifest.kind, manifest.namespace, manifest.name,
                    RecordPatch(labels=manifest.labels, data=manifest.data),
                )
        else:
            do_update = store.update

        return cls(
            name=name,
            protocol=protocol,
            manifest=lambda: record,
            create=store.create,
            update=do_update,
            patch_data=patch,
            patch=do_patch if patch is not None else None,
        )
