"""Tests for the mscope CLI."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest import mock

import pytest
import yaml
from click.testing import CliRunner
from kube_mock import (
    MockControlPlane,
    make_cluster,
    make_linode_cluster,
    make_linode_machine,
    make_machine,
)

from machine_scope.cli import cli, load_scope_params

ENV = {"LINODE_TOKEN": "controller-api-token", "LINODE_DNS_TOKEN": None}


@pytest.fixture
def populated(control_plane: MockControlPlane) -> MockControlPlane:
    """Control plane holding a full LinodeMachine object graph."""
    control_plane.put(make_cluster())
    control_plane.put(make_machine(data_secret_name="bootstrap"))
    control_plane.put(make_linode_cluster())
    control_plane.put(make_linode_machine(name="worker-0"))
    control_plane.put_secret("default", "bootstrap", {"value": "#cloud-config\n"})
    return control_plane


@pytest.fixture
def runner(populated: MockControlPlane) -> Iterator[CliRunner]:
    with mock.patch("machine_scope.cli.KubernetesControlPlaneClient", return_value=populated):
        yield CliRunner()


class TestLoadScopeParams:
    """Tests for parent object discovery."""

    @pytest.mark.asyncio
    async def test_loads_all_parents(self, populated: MockControlPlane) -> None:
        """Test parents are found through owner references and labels."""
        params = await load_scope_params(populated, "default", "worker-0")

        assert params.linode_machine is not None
        assert params.machine is not None
        assert params.machine.name == "test-machine"
        assert params.cluster is not None
        assert params.linode_cluster is not None
        assert params.linode_cluster.name == "test-cluster"

    @pytest.mark.asyncio
    async def test_missing_parent_left_empty(self, control_plane: MockControlPlane) -> None:
        """Test absent parents are reported as None rather than raising."""
        control_plane.put(make_linode_machine(name="worker-0"))

        params = await load_scope_params(control_plane, "default", "worker-0")

        assert params.linode_machine is not None
        assert params.machine is None
        assert params.cluster is None
        assert params.linode_cluster is None


class TestDescribe:
    """Tests for the describe command."""

    def test_describe(self, runner: CliRunner) -> None:
        """Test the summary shows the credential tier without tokens."""
        result = runner.invoke(cli, ["describe", "default", "worker-0"], env=ENV)

        assert result.exit_code == 0, result.output
        summary = yaml.safe_load(result.output)
        assert summary["credentials"]["tier"] == "controller"
        assert summary["credentials"]["separateDnsToken"] is False
        assert summary["bootstrapDataSecret"] == "bootstrap"
        assert summary["finalizers"] == []
        assert "controller-api-token" not in result.output

    def test_missing_linode_machine(self, runner: CliRunner) -> None:
        """Test an unknown LinodeMachine is a clean error."""
        result = runner.invoke(cli, ["describe", "default", "missing"], env=ENV)

        assert result.exit_code == 1
        assert "LinodeMachine default/missing not found" in result.output

    def test_missing_token(self, runner: CliRunner) -> None:
        """Test missing controller configuration is reported."""
        result = runner.invoke(
            cli, ["describe", "default", "worker-0"], env={"LINODE_TOKEN": None}
        )

        assert result.exit_code == 1
        assert "LINODE_TOKEN is required" in result.output

    def test_missing_parent(self, control_plane: MockControlPlane) -> None:
        """Test a missing parent object names the field."""
        control_plane.put(make_linode_machine(name="worker-0"))

        with mock.patch(
            "machine_scope.cli.KubernetesControlPlaneClient", return_value=control_plane
        ):
            result = CliRunner().invoke(cli, ["describe", "default", "worker-0"], env=ENV)

        assert result.exit_code == 1
        assert "MissingRequiredFieldError" in result.output
        assert "cluster is required" in result.output


class TestBootstrapData:
    """Tests for the bootstrap-data command."""

    def test_prints_payload(self, runner: CliRunner) -> None:
        """Test the payload is written to stdout."""
        result = runner.invoke(cli, ["bootstrap-data", "default", "worker-0"], env=ENV)

        assert result.exit_code == 0, result.output
        assert result.output == "#cloud-config\n"

    def test_writes_file(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test --output writes the raw payload to a file."""
        target = tmp_path / "user-data"

        result = runner.invoke(
            cli, ["bootstrap-data", "default", "worker-0", "-o", str(target)], env=ENV
        )

        assert result.exit_code == 0, result.output
        assert target.read_bytes() == b"#cloud-config\n"

    def test_missing_secret(self, runner: CliRunner, populated: MockControlPlane) -> None:
        """Test a missing bootstrap secret is reported by error type."""
        del populated.objects[("Secret", "default", "bootstrap")]

        result = runner.invoke(cli, ["bootstrap-data", "default", "worker-0"], env=ENV)

        assert result.exit_code == 1
        assert "BootstrapSecretNotFoundError" in result.output
