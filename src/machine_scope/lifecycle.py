"""Lifecycle operations on an assembled MachineScope.

Finalizer changes are persisted immediately rather than at the end of
the reconcile: if the process dies after adding the finalizer in memory
but before writing it, the API server would let the LinodeMachine be
deleted while its Linode instance still exists.

Two finalizer lifecycles are handled:

1. MACHINE_FINALIZER on the LinodeMachine, guarding instance cleanup.
2. A per-machine finalizer on the LinodeMachine's own credentials
   secret (only when spec.credentialsRef is set), so the secret cannot
   be deleted while the machine still needs it. Controller credentials
   need no such protection.
"""

from __future__ import annotations

import logging

from .credentials import add_credentials_finalizer, remove_credentials_finalizer, to_finalizer
from .errors import (
    BootstrapPayloadMissingError,
    BootstrapSecretNotFoundError,
    MissingBootstrapReferenceError,
    NotFoundError,
)
from .models import MACHINE_FINALIZER
from .scope import MachineScope

logger = logging.getLogger(__name__)

# Key holding the payload in a bootstrap data secret
BOOTSTRAP_DATA_KEY = "value"


class LifecycleCoordinator:
    """Persistence, finalizers and bootstrap data for one scope.

    All operations run sequentially within the owning reconcile; there is
    no internal locking.
    """

    def __init__(self, scope: MachineScope) -> None:
        self.scope = scope

    @property
    def _log_extra(self) -> dict[str, str]:
        return {"linode_machine": str(self.scope.linode_machine.ref())}

    async def persist(self) -> bool:
        """Persist finalizer and status changes of the LinodeMachine.

        Returns:
            True if a write happened, False if nothing changed.

        Raises:
            ConflictError: If the LinodeMachine changed since the snapshot.
        """
        return await self.scope.patch_helper.patch(self.scope.linode_machine)

    async def close(self) -> bool:
        """Persist pending changes at the end of a reconcile."""
        return await self.persist()

    async def add_finalizer(self, finalizer: str = MACHINE_FINALIZER) -> bool:
        """Add a finalizer to the LinodeMachine and persist immediately.

        Returns:
            True if the finalizer was added, False if already present.
        """
        if not self.scope.linode_machine.metadata.add_finalizer(finalizer):
            return False

        logger.info("Adding finalizer", extra={**self._log_extra, "finalizer": finalizer})
        await self.persist()
        return True

    async def remove_finalizer(self, finalizer: str = MACHINE_FINALIZER) -> bool:
        """Remove a finalizer from the LinodeMachine and persist immediately.

        Returns:
            True if the finalizer was removed, False if it was absent.
        """
        if not self.scope.linode_machine.metadata.remove_finalizer(finalizer):
            return False

        logger.info("Removing finalizer", extra={**self._log_extra, "finalizer": finalizer})
        await self.persist()
        return True

    async def protect_credential_ref(self) -> bool:
        """Register this machine's finalizer on its credentials secret.

        No-op unless the LinodeMachine has its own credentialsRef.

        Returns:
            True if the secret was patched.
        """
        linode_machine = self.scope.linode_machine
        if linode_machine.spec.credentials_ref is None:
            return False

        return await add_credentials_finalizer(
            self.scope.client,
            linode_machine.spec.credentials_ref,
            linode_machine.namespace,
            to_finalizer(linode_machine),
        )

    async def release_credential_ref(self) -> bool:
        """Remove this machine's finalizer from its credentials secret.

        No-op unless the LinodeMachine has its own credentialsRef.

        Returns:
            True if the secret was patched.
        """
        linode_machine = self.scope.linode_machine
        if linode_machine.spec.credentials_ref is None:
            return False

        return await remove_credentials_finalizer(
            self.scope.client,
            linode_machine.spec.credentials_ref,
            linode_machine.namespace,
            to_finalizer(linode_machine),
        )

    async def fetch_bootstrap_data(self) -> bytes:
        """Fetch the bootstrap payload named by Machine.spec.bootstrap.dataSecretName.

        The secret is read from the LinodeMachine's namespace on every call.

        Raises:
            MissingBootstrapReferenceError: If no data secret is named yet.
            BootstrapSecretNotFoundError: If the secret does not exist.
            BootstrapPayloadMissingError: If the secret has no "value" key.
        """
        linode_machine = self.scope.linode_machine
        name = f"{linode_machine.namespace}/{linode_machine.name}"
        secret_name = self.scope.machine.spec.bootstrap.data_secret_name

        if not secret_name:
            raise MissingBootstrapReferenceError(
                f"bootstrap data secret is nil for LinodeMachine {name}"
            )

        try:
            secret = await self.scope.client.get_secret(linode_machine.namespace, secret_name)
        except NotFoundError as e:
            raise BootstrapSecretNotFoundError(
                f"failed to retrieve bootstrap data secret {secret_name} for LinodeMachine {name}"
            ) from e

        if BOOTSTRAP_DATA_KEY not in secret.data:
            raise BootstrapPayloadMissingError(
                f"bootstrap data secret value key is missing for LinodeMachine {name}"
            )

        return secret.data[BOOTSTRAP_DATA_KEY]
