"""Control plane access for machine scopes.

The scope talks to the Kubernetes API only through the small
ControlPlaneClient protocol so that reconcile code and tests can swap
the transport. KubernetesControlPlaneClient implements it with the
official ``kubernetes`` client.

The official client is synchronous; every call runs in the default
executor under a timeout so a stuck API server surfaces as TimeoutError
and task cancellation is honoured at the await point.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Protocol

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException

from .config import DEFAULT_KUBE_REQUEST_TIMEOUT_SECONDS
from .errors import ConflictError, NotFoundError
from .models import ObjectRef, Secret

logger = logging.getLogger(__name__)

# Finalizer lists must be replaced, not merged, so strategic merge is never used
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class ControlPlaneClient(Protocol):
    """Operations the scope needs from the control plane."""

    async def get_secret(self, namespace: str, name: str) -> Secret:
        """Fetch a Secret.

        Raises:
            NotFoundError: If the secret does not exist.
        """
        ...

    async def get_object(self, ref: ObjectRef) -> dict[str, Any]:
        """Fetch an object as a manifest dict.

        Raises:
            NotFoundError: If the object does not exist.
        """
        ...

    async def patch_object(
        self,
        ref: ObjectRef,
        body: dict[str, Any],
        *,
        subresource: str | None = None,
    ) -> dict[str, Any]:
        """Apply a merge patch and return the updated manifest.

        A ``metadata.resourceVersion`` in the body makes the patch
        conditional on the object not having changed.

        Raises:
            NotFoundError: If the object does not exist.
            ConflictError: If the resourceVersion no longer matches.
        """
        ...


def _split_api_version(api_version: str) -> tuple[str, str]:
    """Split ``group/version`` into its parts; core objects have no group."""
    if "/" not in api_version:
        return "", api_version
    group, version = api_version.split("/", 1)
    return group, version


def _plural(kind: str) -> str:
    return kind.lower() + "s"


class KubernetesControlPlaneClient:
    """ControlPlaneClient backed by the official Kubernetes Python client."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        *,
        request_timeout_seconds: int = DEFAULT_KUBE_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the client.

        Args:
            api_client: Preconfigured ApiClient. If None, in-cluster
                configuration is tried first, then the local kubeconfig.
            request_timeout_seconds: Timeout applied to every API call.
        """
        if api_client is None:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()
            api_client = client.ApiClient()

        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)
        self._timeout = request_timeout_seconds

    async def _call(self, ref: ObjectRef, func: Any, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        kwargs.setdefault("_request_timeout", self._timeout)
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
                timeout=self._timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{ref} not found") from e
            if e.status == 409:
                raise ConflictError(f"{ref} was modified concurrently: {e.reason}") from e
            raise

    async def get_secret(self, namespace: str, name: str) -> Secret:
        ref = ObjectRef(api_version="v1", kind="Secret", namespace=namespace, name=name)
        secret = await self._call(ref, self._core.read_namespaced_secret, name, namespace)
        return Secret.model_validate(self._api_client.sanitize_for_serialization(secret))

    async def get_object(self, ref: ObjectRef) -> dict[str, Any]:
        if ref.kind == "Secret":
            secret = await self._call(
                ref, self._core.read_namespaced_secret, ref.name, ref.namespace
            )
            return self._api_client.sanitize_for_serialization(secret)

        group, version = _split_api_version(ref.api_version)
        return await self._call(
            ref,
            self._custom.get_namespaced_custom_object,
            group,
            version,
            ref.namespace,
            _plural(ref.kind),
            ref.name,
        )

    async def patch_object(
        self,
        ref: ObjectRef,
        body: dict[str, Any],
        *,
        subresource: str | None = None,
    ) -> dict[str, Any]:
        logger.debug(
            "Patching object",
            extra={"object": str(ref), "subresource": subresource},
        )

        if ref.kind == "Secret":
            if subresource is not None:
                raise ValueError("Secrets have no subresources")
            secret = await self._call(
                ref,
                self._core.patch_namespaced_secret,
                ref.name,
                ref.namespace,
                body,
                _content_type=MERGE_PATCH_CONTENT_TYPE,
            )
            return self._api_client.sanitize_for_serialization(secret)

        if subresource not in (None, "status"):
            raise ValueError(f"Unsupported subresource: {subresource}")

        group, version = _split_api_version(ref.api_version)
        func = (
            self._custom.patch_namespaced_custom_object_status
            if subresource == "status"
            else self._custom.patch_namespaced_custom_object
        )

        return await self._call(
            ref,
            func,
            group,
            version,
            ref.namespace,
            _plural(ref.kind),
            ref.name,
            body,
            _content_type=MERGE_PATCH_CONTENT_TYPE,
        )
