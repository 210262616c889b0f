"""Machine scope CLI (mscope).

Operator tooling for inspecting what a LinodeMachine reconcile would see.

Usage:
    mscope describe default worker-0          # Credential tier, finalizers, bootstrap ref
    mscope bootstrap-data default worker-0    # Dump the bootstrap payload
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from .config import ConfigurationError, ScopeConfig
from .credentials import to_finalizer
from .errors import NotFoundError, ScopeError
from .kube import ControlPlaneClient, KubernetesControlPlaneClient
from .lifecycle import LifecycleCoordinator
from .logging_setup import setup_logging
from .models import (
    CLUSTER_API_VERSION,
    LINODE_CLUSTER_API_VERSION,
    LINODE_MACHINE_API_VERSION,
    Cluster,
    LinodeCluster,
    LinodeMachine,
    Machine,
    ObjectRef,
)
from .scope import MachineScope, MachineScopeParams, new_machine_scope

# Label Cluster API puts on every object belonging to a cluster
CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"


async def _get_optional(client: ControlPlaneClient, ref: ObjectRef) -> dict[str, Any] | None:
    try:
        return await client.get_object(ref)
    except NotFoundError:
        return None


async def load_scope_params(
    client: ControlPlaneClient,
    namespace: str,
    name: str,
) -> MachineScopeParams:
    """Fetch a LinodeMachine and its parent objects.

    Parents that cannot be found are left as None so scope construction
    reports the missing field by name.

    Raises:
        NotFoundError: If the LinodeMachine itself does not exist.
    """
    linode_machine = LinodeMachine.model_validate(
        await client.get_object(
            ObjectRef(
                api_version=LINODE_MACHINE_API_VERSION,
                kind="LinodeMachine",
                namespace=namespace,
                name=name,
            )
        )
    )
    params = MachineScopeParams(client=client, linode_machine=linode_machine)

    for owner in linode_machine.metadata.owner_references:
        if owner.kind == "Machine":
            data = await _get_optional(
                client,
                ObjectRef(
                    api_version=owner.api_version,
                    kind="Machine",
                    namespace=namespace,
                    name=owner.name,
                ),
            )
            params.machine = Machine.model_validate(data) if data else None
            break

    cluster_name = linode_machine.metadata.labels.get(CLUSTER_NAME_LABEL)
    if not cluster_name and params.machine is not None:
        cluster_name = params.machine.spec.cluster_name
    if not cluster_name:
        return params

    data = await _get_optional(
        client,
        ObjectRef(
            api_version=CLUSTER_API_VERSION,
            kind="Cluster",
            namespace=namespace,
            name=cluster_name,
        ),
    )
    if not data:
        return params
    params.cluster = Cluster.model_validate(data)

    infrastructure_ref = params.cluster.spec.get("infrastructureRef") or {}
    if infrastructure_ref.get("name"):
        data = await _get_optional(
            client,
            ObjectRef(
                api_version=infrastructure_ref.get("apiVersion", LINODE_CLUSTER_API_VERSION),
                kind="LinodeCluster",
                namespace=infrastructure_ref.get("namespace", namespace),
                name=infrastructure_ref["name"],
            ),
        )
        params.linode_cluster = LinodeCluster.model_validate(data) if data else None

    return params


def describe_scope(scope: MachineScope) -> dict[str, Any]:
    """Summarize a scope for display. Never includes token values."""
    source = scope.credentials.source
    credentials: dict[str, Any] = {"tier": source.tier}
    secret_ref = getattr(source, "ref", None)
    if secret_ref is not None:
        credentials["secretRef"] = {
            "name": secret_ref.name,
            "namespace": secret_ref.namespace or source.default_namespace,
        }
    credentials["separateDnsToken"] = scope.credentials.dns_token != scope.credentials.api_token

    linode_machine = scope.linode_machine
    summary: dict[str, Any] = {
        "linodeMachine": f"{linode_machine.namespace}/{linode_machine.name}",
        "machine": scope.machine.name,
        "cluster": scope.cluster.name,
        "linodeCluster": scope.linode_cluster.name,
        "credentials": credentials,
        "finalizers": list(linode_machine.metadata.finalizers),
        "bootstrapDataSecret": scope.machine.spec.bootstrap.data_secret_name,
    }
    if linode_machine.spec.credentials_ref is not None:
        summary["credentialsFinalizer"] = to_finalizer(linode_machine)
    return summary


async def _open_scope(namespace: str, name: str) -> MachineScope:
    config = ScopeConfig.from_env()
    client = KubernetesControlPlaneClient(
        request_timeout_seconds=config.kube_request_timeout_seconds
    )
    params = await load_scope_params(client, namespace, name)
    return await new_machine_scope(params, config)


def _run_scope(namespace: str, name: str) -> MachineScope:
    try:
        return asyncio.run(_open_scope(namespace, name))
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    except NotFoundError as e:
        raise click.ClickException(f"LinodeMachine {namespace}/{name} not found") from e
    except ScopeError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr.")
def cli(verbose: bool) -> None:
    """Inspect Linode machine reconciliation scopes."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING, stream=sys.stderr)


@cli.command()
@click.argument("namespace")
@click.argument("name")
def describe(namespace: str, name: str) -> None:
    """Show how a LinodeMachine's scope resolves."""
    scope = _run_scope(namespace, name)
    try:
        click.echo(yaml.safe_dump(describe_scope(scope), sort_keys=False), nl=False)
    finally:
        scope.close_clients()


@cli.command("bootstrap-data")
@click.argument("namespace")
@click.argument("name")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the payload to a file instead of stdout.",
)
def bootstrap_data(namespace: str, name: str, output: Path | None) -> None:
    """Print the bootstrap payload of a LinodeMachine."""
    scope = _run_scope(namespace, name)
    try:
        payload = asyncio.run(LifecycleCoordinator(scope).fetch_bootstrap_data())
    except ScopeError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e
    finally:
        scope.close_clients()

    if output is not None:
        output.write_bytes(payload)
        click.echo(f"Wrote {len(payload)} bytes to {output}", err=True)
    else:
        click.echo(payload, nl=False)


def main() -> None:
    """Entry point for the mscope CLI."""
    cli()


if __name__ == "__main__":
    main()
