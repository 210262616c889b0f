"""Credential resolution with override precedence.

Linode API tokens for a machine come from the first tier that applies:

1. LinodeMachine.spec.credentialsRef
2. LinodeCluster.spec.credentialsRef (the owning cluster)
3. The controller's own credentials

Selection is a pure function over the two objects and returns a tagged
variant, so the precedence can be tested without any I/O. Reading the
selected secret happens separately in resolve_credentials().

The referenced secret must carry ``apiToken`` and may carry ``dnsToken``
for the Domains API. When ``dnsToken`` cannot be read or is empty the
API token is used for both clients.

Secrets are never mutated here except for the finalizer that protects a
referenced secret from deletion while a machine still depends on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import ControllerCredentials
from .errors import CredentialLookupError, NotFoundError
from .kube import ControlPlaneClient
from .models import KubeObject, LinodeCluster, LinodeMachine, ObjectRef, SecretReference

logger = logging.getLogger(__name__)

# Keys read from a credentials secret
API_TOKEN_KEY = "apiToken"
DNS_TOKEN_KEY = "dnsToken"


# =============================================================================
# Credential sources
# =============================================================================


@dataclass(frozen=True)
class MachineCredentialsRef:
    """Override attached directly to the LinodeMachine."""

    ref: SecretReference
    default_namespace: str

    tier = "linodeMachine"


@dataclass(frozen=True)
class ClusterCredentialsRef:
    """Override attached to the owning LinodeCluster."""

    ref: SecretReference
    default_namespace: str

    tier = "linodeCluster"


@dataclass(frozen=True)
class ControllerCredentialsSource:
    """No override; the controller's own credentials apply."""

    tier = "controller"


CredentialSource = MachineCredentialsRef | ClusterCredentialsRef | ControllerCredentialsSource


@dataclass(frozen=True)
class ResolvedCredentials:
    """Tokens for the primary and Domains API clients.

    api_token is never empty after successful resolution;
    dns_token equals api_token when no separate Domains token exists.
    """

    api_token: str
    dns_token: str
    source: CredentialSource

    def __repr__(self) -> str:
        return f"ResolvedCredentials(source={self.source.tier})"


def select_credential_source(
    linode_machine: LinodeMachine,
    linode_cluster: LinodeCluster,
) -> CredentialSource:
    """Pick the credential tier for a machine. First match wins."""
    if linode_machine.spec.credentials_ref is not None:
        return MachineCredentialsRef(
            ref=linode_machine.spec.credentials_ref,
            default_namespace=linode_machine.namespace,
        )
    if linode_cluster.spec.credentials_ref is not None:
        return ClusterCredentialsRef(
            ref=linode_cluster.spec.credentials_ref,
            default_namespace=linode_cluster.namespace,
        )
    return ControllerCredentialsSource()


# =============================================================================
# Secret lookup
# =============================================================================


async def get_credential_data_from_ref(
    client: ControlPlaneClient,
    ref: SecretReference,
    default_namespace: str,
    key: str,
) -> bytes:
    """Read one key from a referenced credentials secret.

    Args:
        client: Control plane client.
        ref: Secret reference; its namespace defaults to default_namespace.
        default_namespace: Namespace of the object holding the reference.
        key: Data key to read.

    Returns:
        Raw value of the key (possibly empty).

    Raises:
        CredentialLookupError: If the secret or the key does not exist.
    """
    namespace = ref.namespace or default_namespace
    try:
        secret = await client.get_secret(namespace, ref.name)
    except NotFoundError as e:
        raise CredentialLookupError(
            f"credentials secret {namespace}/{ref.name} not found"
        ) from e

    if key not in secret.data:
        raise CredentialLookupError(
            f"no {key} key in credentials secret {namespace}/{ref.name}"
        )
    return secret.data[key]


async def _read_dns_token(
    client: ControlPlaneClient,
    source: MachineCredentialsRef | ClusterCredentialsRef,
) -> str:
    """Read the optional Domains API token; empty when it cannot be used."""
    ref = source.ref
    try:
        raw = await get_credential_data_from_ref(
            client, ref, source.default_namespace, DNS_TOKEN_KEY
        )
        return raw.decode("utf-8")
    except Exception as e:
        logger.debug(
            "Using apiToken for Domains API",
            extra={"secret": ref.name, "tier": source.tier, "reason": repr(e)},
        )
        return ""


async def resolve_credentials(
    client: ControlPlaneClient,
    source: CredentialSource,
    defaults: ControllerCredentials,
) -> ResolvedCredentials:
    """Resolve tokens for the selected credential source.

    The dnsToken is optional: any failure to read or decode it yields
    the apiToken instead. The apiToken is never empty on success.

    Raises:
        CredentialLookupError: If no usable apiToken is available.
    """
    if isinstance(source, ControllerCredentialsSource):
        if not defaults.api_token:
            raise CredentialLookupError("controller LINODE_TOKEN is empty")
        return ResolvedCredentials(
            api_token=defaults.api_token,
            dns_token=defaults.dns_token or defaults.api_token,
            source=source,
        )

    ref, namespace = source.ref, source.default_namespace
    secret_name = f"{ref.namespace or namespace}/{ref.name}"
    raw_api_token = await get_credential_data_from_ref(client, ref, namespace, API_TOKEN_KEY)
    try:
        api_token = raw_api_token.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CredentialLookupError(
            f"{API_TOKEN_KEY} in credentials secret {secret_name} is not valid UTF-8"
        ) from e
    if not api_token:
        raise CredentialLookupError(
            f"{API_TOKEN_KEY} is empty in credentials secret {secret_name}"
        )

    dns_token = await _read_dns_token(client, source)

    logger.info(
        "Resolved credentials from secret reference",
        extra={
            "tier": source.tier,
            "secret": ref.name,
            "secret_namespace": ref.namespace or namespace,
            "separate_dns_token": bool(dns_token),
        },
    )

    return ResolvedCredentials(
        api_token=api_token,
        dns_token=dns_token or api_token,
        source=source,
    )


# =============================================================================
# Credentials reference finalizers
# =============================================================================


def to_finalizer(obj: KubeObject) -> str:
    """Derive the credentials finalizer owned by a referencing object.

    Unique per referencing object, e.g. ``linodemachine.default/worker-0``.
    """
    return f"{obj.kind.lower()}.{obj.namespace}/{obj.name}"


def _secret_ref(ref: SecretReference, default_namespace: str) -> ObjectRef:
    return ObjectRef(
        api_version="v1",
        kind="Secret",
        namespace=ref.namespace or default_namespace,
        name=ref.name,
    )


async def add_credentials_finalizer(
    client: ControlPlaneClient,
    ref: SecretReference,
    default_namespace: str,
    finalizer: str,
) -> bool:
    """Add a finalizer to a referenced credentials secret.

    Returns:
        True if the secret was patched, False if the finalizer was present.

    Raises:
        CredentialLookupError: If the secret does not exist.
        ConflictError: If the secret changed while patching.
    """
    secret_ref = _secret_ref(ref, default_namespace)
    try:
        secret = await client.get_secret(secret_ref.namespace, secret_ref.name)
    except NotFoundError as e:
        raise CredentialLookupError(f"credentials secret {secret_ref} not found") from e

    if not secret.metadata.add_finalizer(finalizer):
        return False

    await client.patch_object(
        secret_ref,
        {
            "metadata": {
                "finalizers": list(secret.metadata.finalizers),
                "resourceVersion": secret.metadata.resource_version,
            }
        },
    )
    logger.info(
        "Added credentials finalizer",
        extra={"secret": str(secret_ref), "finalizer": finalizer},
    )
    return True


async def remove_credentials_finalizer(
    client: ControlPlaneClient,
    ref: SecretReference,
    default_namespace: str,
    finalizer: str,
) -> bool:
    """Remove a finalizer from a referenced credentials secret.

    A secret that no longer exists has nothing to release.

    Returns:
        True if the secret was patched.

    Raises:
        ConflictError: If the secret changed while patching.
    """
    secret_ref = _secret_ref(ref, default_namespace)
    try:
        secret = await client.get_secret(secret_ref.namespace, secret_ref.name)
    except NotFoundError:
        logger.info(
            "Credentials secret already gone",
            extra={"secret": str(secret_ref), "finalizer": finalizer},
        )
        return False

    if not secret.metadata.remove_finalizer(finalizer):
        return False

    await client.patch_object(
        secret_ref,
        {
            "metadata": {
                "finalizers": list(secret.metadata.finalizers),
                "resourceVersion": secret.metadata.resource_version,
            }
        },
    )
    logger.info(
        "Removed credentials finalizer",
        extra={"secret": str(secret_ref), "finalizer": finalizer},
    )
    return True
