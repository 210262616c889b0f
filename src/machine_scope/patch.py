"""Snapshot-based patch computation for the scope's owner object.

The helper captures a "before" copy of the fields the scope is allowed to
change when it is created and compares it field by field with the live
object on every patch() call. Only changed fields are sent:

- metadata.finalizers, as a whole list (merge patches replace lists)
- each status field listed in STATUS_FIELDS; cleared fields become null

Every metadata patch carries the resourceVersion captured with the
snapshot, so the API server rejects it with 409 Conflict when someone
else wrote the object in between. After a successful write the snapshot
is re-captured, which makes repeated patch() calls without mutation free.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from .kube import ControlPlaneClient
from .models import LinodeMachine

logger = logging.getLogger(__name__)

# Status fields owned by the scope, by manifest key
STATUS_FIELDS: tuple[str, ...] = (
    "ready",
    "addresses",
    "instanceState",
    "failureReason",
    "failureMessage",
    "conditions",
)


@dataclass(frozen=True)
class ObjectSnapshot:
    """Values of the patchable fields at one point in time."""

    resource_version: str | None
    finalizers: tuple[str, ...]
    status: dict[str, Any]

    @classmethod
    def capture(cls, obj: LinodeMachine) -> ObjectSnapshot:
        status = obj.status.model_dump(by_alias=True, mode="json")
        return cls(
            resource_version=obj.metadata.resource_version,
            finalizers=tuple(obj.metadata.finalizers),
            status={key: copy.deepcopy(status.get(key)) for key in STATUS_FIELDS},
        )


@dataclass
class ObjectPatch:
    """Minimal changes between a snapshot and the live object."""

    finalizers: list[str] | None = None
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.finalizers is None and not self.status


def calculate_patch(before: ObjectSnapshot, after: ObjectSnapshot) -> ObjectPatch:
    """Compare two snapshots field by field."""
    patch = ObjectPatch()

    # Order matters: the persisted list keeps its serialization order
    if list(before.finalizers) != list(after.finalizers):
        patch.finalizers = list(after.finalizers)

    for key in STATUS_FIELDS:
        if before.status.get(key) != after.status.get(key):
            patch.status[key] = after.status.get(key)

    return patch


class PatchHelper:
    """Persists finalizer and status changes of a LinodeMachine.

    Not safe for concurrent use; one helper belongs to one scope.
    """

    def __init__(self, obj: LinodeMachine, client: ControlPlaneClient) -> None:
        self._client = client
        self._ref = obj.ref()
        self._before = ObjectSnapshot.capture(obj)

    @property
    def before(self) -> ObjectSnapshot:
        return self._before

    def calculate_patch(self, obj: LinodeMachine) -> ObjectPatch:
        return calculate_patch(self._before, ObjectSnapshot.capture(obj))

    async def patch(self, obj: LinodeMachine) -> bool:
        """Write pending changes of obj to the control plane.

        Returns:
            True if anything was written.

        Raises:
            ConflictError: If the object changed since the snapshot.
            NotFoundError: If the object no longer exists.
        """
        patch = self.calculate_patch(obj)
        if patch.is_empty:
            return False

        resource_version = self._before.resource_version

        if patch.finalizers is not None:
            updated = await self._client.patch_object(
                self._ref,
                {
                    "metadata": {
                        "finalizers": patch.finalizers,
                        "resourceVersion": resource_version,
                    }
                },
            )
            resource_version = updated.get("metadata", {}).get("resourceVersion", resource_version)
            obj.metadata.resource_version = resource_version
            self._before = replace(
                self._before,
                resource_version=resource_version,
                finalizers=tuple(patch.finalizers),
            )

        if patch.status:
            updated = await self._client.patch_object(
                self._ref,
                {
                    "metadata": {"resourceVersion": resource_version},
                    "status": patch.status,
                },
                subresource="status",
            )
            resource_version = updated.get("metadata", {}).get("resourceVersion", resource_version)

        logger.info(
            "Patched object",
            extra={
                "object": str(self._ref),
                "finalizers_changed": patch.finalizers is not None,
                "status_fields": sorted(patch.status),
            },
        )

        obj.metadata.resource_version = resource_version
        self._before = ObjectSnapshot.capture(obj)
        return True
