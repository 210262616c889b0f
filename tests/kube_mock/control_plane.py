"""In-memory control plane implementing the ControlPlaneClient protocol."""

from __future__ import annotations

import base64
import copy
from dataclasses import dataclass, field
from typing import Any

from machine_scope.errors import ConflictError, NotFoundError
from machine_scope.models import KubeObject, ObjectRef, Secret

ObjectKey = tuple[str, str, str]


@dataclass
class RecordedCall:
    """One call made against the mock."""

    method: str
    kind: str
    namespace: str
    name: str
    body: dict[str, Any] | None = None
    subresource: str | None = None


def _merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Apply an RFC 7386 JSON merge patch."""
    result = copy.deepcopy(target)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_patch(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


@dataclass
class MockControlPlane:
    """In-memory object store with resourceVersion semantics.

    Thread-safe: No. Tests drive it from a single event loop.
    """

    objects: dict[ObjectKey, dict[str, Any]] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)
    conflict_on_next_patch: bool = False
    _version: int = 100

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    # -------------------------------------------------------------------------
    # Setup helpers
    # -------------------------------------------------------------------------

    def put(self, obj: KubeObject) -> Any:
        """Store an object and stamp it with a fresh resourceVersion.

        Returns:
            The same object, for chaining.
        """
        obj.metadata.resource_version = self._next_version()
        self.objects[(obj.kind, obj.namespace, obj.name)] = obj.to_manifest()
        return obj

    def put_secret(
        self,
        namespace: str,
        name: str,
        data: dict[str, bytes | str],
        finalizers: list[str] | None = None,
    ) -> None:
        """Store a secret; values are base64-encoded like the API server does."""
        encoded = {
            key: base64.b64encode(value.encode() if isinstance(value, str) else value).decode()
            for key, value in data.items()
        }
        self.objects[("Secret", namespace, name)] = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "resourceVersion": self._next_version(),
                "finalizers": list(finalizers or []),
            },
            "data": encoded,
        }

    def modify(self, kind: str, namespace: str, name: str) -> None:
        """Simulate a write by another client."""
        manifest = self.objects[(kind, namespace, name)]
        manifest["metadata"]["resourceVersion"] = self._next_version()

    def manifest(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        return copy.deepcopy(self.objects[(kind, namespace, name)])

    # -------------------------------------------------------------------------
    # Assertions
    # -------------------------------------------------------------------------

    @property
    def writes(self) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == "patch"]

    @property
    def write_count(self) -> int:
        return len(self.writes)

    @property
    def read_count(self) -> int:
        return len([c for c in self.calls if c.method == "get"])

    # -------------------------------------------------------------------------
    # ControlPlaneClient
    # -------------------------------------------------------------------------

    def _lookup(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        try:
            return self.objects[(kind, namespace, name)]
        except KeyError:
            raise NotFoundError(f"{kind} {namespace}/{name} not found") from None

    async def get_secret(self, namespace: str, name: str) -> Secret:
        self.calls.append(RecordedCall("get", "Secret", namespace, name))
        return Secret.model_validate(copy.deepcopy(self._lookup("Secret", namespace, name)))

    async def get_object(self, ref: ObjectRef) -> dict[str, Any]:
        self.calls.append(RecordedCall("get", ref.kind, ref.namespace, ref.name))
        return copy.deepcopy(self._lookup(ref.kind, ref.namespace, ref.name))

    async def patch_object(
        self,
        ref: ObjectRef,
        body: dict[str, Any],
        *,
        subresource: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append(
            RecordedCall(
                "patch",
                ref.kind,
                ref.namespace,
                ref.name,
                body=copy.deepcopy(body),
                subresource=subresource,
            )
        )
        current = self._lookup(ref.kind, ref.namespace, ref.name)

        if self.conflict_on_next_patch:
            self.conflict_on_next_patch = False
            raise ConflictError(f"{ref} was modified concurrently")

        expected = body.get("metadata", {}).get("resourceVersion")
        if expected is not None and expected != current["metadata"].get("resourceVersion"):
            raise ConflictError(f"{ref} was modified concurrently")

        # The status subresource only accepts status; the main resource ignores it
        if subresource == "status":
            allowed = {"status": body.get("status", {})}
        else:
            allowed = {k: v for k, v in body.items() if k != "status"}

        if "metadata" in allowed:
            allowed["metadata"] = {
                k: v for k, v in allowed["metadata"].items() if k != "resourceVersion"
            }

        updated = _merge_patch(current, allowed)
        updated["metadata"]["resourceVersion"] = self._next_version()
        self.objects[(ref.kind, ref.namespace, ref.name)] = updated
        return copy.deepcopy(updated)
