"""Kubernetes control plane mock for scope testing.

Provides an in-memory implementation of the ControlPlaneClient protocol
so scopes can be built and exercised without an API server.

Key Features:
- Objects and secrets stored as manifests, like the API server serves them
- resourceVersion tracking with optimistic concurrency on patches
- JSON merge patch semantics (lists replaced, null deletes)
- Read/write call log for asserting round-trips
- Concurrent modification and error injection

Usage:
    from kube_mock import MockControlPlane, make_linode_machine

    control_plane = MockControlPlane()
    linode_machine = control_plane.put(make_linode_machine())
    scope = await new_machine_scope(params, config)

    assert control_plane.write_count == 0
"""

from .control_plane import MockControlPlane, RecordedCall
from .objects import make_cluster, make_linode_cluster, make_linode_machine, make_machine

__all__ = [
    "MockControlPlane",
    "RecordedCall",
    "make_cluster",
    "make_linode_cluster",
    "make_linode_machine",
    "make_machine",
]
