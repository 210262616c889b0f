"""Pydantic models for the Kubernetes objects a machine scope works with.

These models provide:
1. Type-safe parsing of API server responses and YAML manifests
2. Explicit finalizer bookkeeping with set semantics on an ordered list
3. Clean serialization back to camelCase manifests for patches
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

# API versions served by Cluster API and the Linode infrastructure provider
CLUSTER_API_VERSION = "cluster.x-k8s.io/v1beta1"
LINODE_MACHINE_API_VERSION = "infrastructure.cluster.x-k8s.io/v1alpha1"
LINODE_CLUSTER_API_VERSION = "infrastructure.cluster.x-k8s.io/v1alpha2"

# Finalizer that guards LinodeMachine deletion until the instance is gone
MACHINE_FINALIZER = "linodemachine.infrastructure.cluster.x-k8s.io"


class ObjectRef(BaseModel):
    """Address of a single namespaced object in the control plane."""

    model_config = {"frozen": True}

    api_version: str
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


class SecretReference(BaseModel):
    """Reference to a Secret, optionally in another namespace."""

    model_config = {"extra": "ignore", "frozen": True}

    name: str = Field(min_length=1)
    namespace: str | None = None


class OwnerReference(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str | None = None


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the scope."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = Field(None, alias="resourceVersion")
    generation: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list, alias="ownerReferences")

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        """Append a finalizer if absent.

        Returns:
            True if the finalizer list changed.
        """
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        """Remove every occurrence of a finalizer.

        Returns:
            True if the finalizer list changed.
        """
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True


class KubeObject(BaseModel):
    """Base for top-level Kubernetes objects."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def ref(self) -> ObjectRef:
        """Get the control plane address of this object."""
        return ObjectRef(
            api_version=self.api_version,
            kind=self.kind,
            namespace=self.metadata.namespace,
            name=self.metadata.name,
        )

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to a camelCase manifest."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Core
# =============================================================================


class Secret(KubeObject):
    """Kubernetes Secret with decoded data.

    ``data`` values arrive base64-encoded from the API server and are stored
    decoded. Raw ``bytes`` are kept as-is. ``stringData`` entries, as found in
    hand-written manifests, are merged in as UTF-8.
    """

    api_version: str = Field("v1", alias="apiVersion")
    kind: str = "Secret"
    data: dict[str, bytes] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def merge_string_data(cls, values: Any) -> Any:
        if isinstance(values, dict) and values.get("stringData"):
            values = dict(values)
            data = dict(values.get("data") or {})
            for key, value in values.pop("stringData").items():
                data[key] = value.encode("utf-8")
            values["data"] = data
        return values

    @field_validator("data", mode="before")
    @classmethod
    def decode_data(cls, v: Any) -> Any:
        if v is None:
            return {}
        decoded: dict[str, bytes] = {}
        for key, value in v.items():
            if isinstance(value, bytes):
                decoded[key] = value
            elif value is None:
                decoded[key] = b""
            else:
                try:
                    decoded[key] = base64.b64decode(value, validate=True)
                except (binascii.Error, ValueError) as e:
                    raise ValueError(f"data[{key}] is not valid base64") from e
        return decoded


# =============================================================================
# Cluster API
# =============================================================================


class Cluster(KubeObject):
    """Cluster API Cluster. Read-only for the scope."""

    api_version: str = Field(CLUSTER_API_VERSION, alias="apiVersion")
    kind: str = "Cluster"
    spec: dict[str, Any] = Field(default_factory=dict)


class Bootstrap(BaseModel):
    """Machine bootstrap configuration."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    data_secret_name: str | None = Field(None, alias="dataSecretName")
    config_ref: dict[str, Any] | None = Field(None, alias="configRef")


class MachineSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    cluster_name: str = Field("", alias="clusterName")
    bootstrap: Bootstrap = Field(default_factory=Bootstrap)
    infrastructure_ref: dict[str, Any] | None = Field(None, alias="infrastructureRef")


class Machine(KubeObject):
    """Cluster API Machine. Read-only for the scope."""

    api_version: str = Field(CLUSTER_API_VERSION, alias="apiVersion")
    kind: str = "Machine"
    spec: MachineSpec = Field(default_factory=MachineSpec)


# =============================================================================
# Linode infrastructure provider
# =============================================================================


class LinodeClusterSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    region: str = ""
    credentials_ref: SecretReference | None = Field(None, alias="credentialsRef")


class LinodeCluster(KubeObject):
    """Linode infrastructure cluster owning the machine."""

    api_version: str = Field(LINODE_CLUSTER_API_VERSION, alias="apiVersion")
    kind: str = "LinodeCluster"
    spec: LinodeClusterSpec = Field(default_factory=LinodeClusterSpec)


class LinodeMachineSpec(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    region: str = ""
    type: str = ""
    image: str | None = None
    provider_id: str | None = Field(None, alias="providerID")
    instance_id: int | None = Field(None, alias="instanceID")
    credentials_ref: SecretReference | None = Field(None, alias="credentialsRef")


class MachineAddress(BaseModel):
    model_config = {"extra": "ignore"}

    type: str
    address: str


class Condition(BaseModel):
    """Cluster API style status condition."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    type: str
    status: str
    severity: str | None = None
    reason: str | None = None
    message: str | None = None
    last_transition_time: str | None = Field(None, alias="lastTransitionTime")


class LinodeMachineStatus(BaseModel):
    """Observed state of a LinodeMachine, written through the status subresource."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    ready: bool = False
    addresses: list[MachineAddress] = Field(default_factory=list)
    instance_state: str | None = Field(None, alias="instanceState")
    failure_reason: str | None = Field(None, alias="failureReason")
    failure_message: str | None = Field(None, alias="failureMessage")
    conditions: list[Condition] = Field(default_factory=list)


class LinodeMachine(KubeObject):
    """Linode machine being reconciled (the scope's owner object)."""

    api_version: str = Field(LINODE_MACHINE_API_VERSION, alias="apiVersion")
    kind: str = "LinodeMachine"
    spec: LinodeMachineSpec = Field(default_factory=LinodeMachineSpec)
    status: LinodeMachineStatus = Field(default_factory=LinodeMachineStatus)
