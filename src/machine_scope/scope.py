"""Machine scope construction.

A MachineScope is built once per LinodeMachine reconcile and discarded at
the end of it. Construction validates that every parent object is
present, resolves Linode credentials, builds the two API clients and
snapshots the LinodeMachine for later patching. It reads at most the
credentials secret and never writes anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .clients import LinodeClient, build_clients
from .config import ScopeConfig
from .credentials import ResolvedCredentials, resolve_credentials, select_credential_source
from .errors import MissingRequiredFieldError
from .kube import ControlPlaneClient
from .models import Cluster, LinodeCluster, LinodeMachine, Machine
from .patch import PatchHelper

logger = logging.getLogger(__name__)


@dataclass
class MachineScopeParams:
    """Inputs for new_machine_scope()."""

    client: ControlPlaneClient
    cluster: Cluster | None = None
    machine: Machine | None = None
    linode_cluster: LinodeCluster | None = None
    linode_machine: LinodeMachine | None = None


@dataclass(frozen=True)
class MachineScope:
    """Per-reconcile context for one LinodeMachine.

    The fields are fixed after construction. linode_machine itself is
    mutable and owned by this scope for the reconcile; changes to its
    finalizers and status reach the API server only through
    patch_helper. Not safe for concurrent use.
    """

    client: ControlPlaneClient
    patch_helper: PatchHelper
    cluster: Cluster
    machine: Machine
    linode_client: LinodeClient
    linode_domains_client: LinodeClient
    linode_cluster: LinodeCluster
    linode_machine: LinodeMachine
    credentials: ResolvedCredentials

    def close_clients(self) -> None:
        """Release both Linode API clients."""
        self.linode_client.close()
        self.linode_domains_client.close()


def validate_machine_scope_params(params: MachineScopeParams) -> None:
    """Check that every parent object is present.

    Raises:
        MissingRequiredFieldError: Naming the first missing field.
    """
    if params.cluster is None:
        raise MissingRequiredFieldError("cluster")
    if params.machine is None:
        raise MissingRequiredFieldError("machine")
    if params.linode_cluster is None:
        raise MissingRequiredFieldError("linodeCluster")
    if params.linode_machine is None:
        raise MissingRequiredFieldError("linodeMachine")


async def new_machine_scope(params: MachineScopeParams, config: ScopeConfig) -> MachineScope:
    """Create a MachineScope.

    Credentials are taken from, in order: the LinodeMachine's
    credentialsRef, the LinodeCluster's credentialsRef, the controller.

    Args:
        params: Control plane client and the objects being reconciled.
        config: Controller configuration (default credentials, client settings).

    Returns:
        Fully initialized scope.

    Raises:
        MissingRequiredFieldError: If a parent object is missing.
        CredentialLookupError: If a referenced credentials secret is unusable.
        ClientConstructionError: If a token cannot build a Linode client.
    """
    validate_machine_scope_params(params)

    source = select_credential_source(params.linode_machine, params.linode_cluster)
    credentials = await resolve_credentials(params.client, source, config.defaults)
    linode_client, linode_domains_client = build_clients(credentials, config)

    logger.debug(
        "Created machine scope",
        extra={
            "linode_machine": str(params.linode_machine.ref()),
            "credentials_tier": source.tier,
        },
    )

    return MachineScope(
        client=params.client,
        patch_helper=PatchHelper(params.linode_machine, params.client),
        cluster=params.cluster,
        machine=params.machine,
        linode_client=linode_client,
        linode_domains_client=linode_domains_client,
        linode_cluster=params.linode_cluster,
        linode_machine=params.linode_machine,
        credentials=credentials,
    )
