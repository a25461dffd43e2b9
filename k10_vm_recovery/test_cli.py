"""
Tests for the command line entry points.
"""

import json
import logging
import os
from unittest.mock import patch

import pytest
import yaml

from .cli import JSONFormatter, create_argument_parser, exit_code_for, run
from .config.loader import RecoveryConfig, RestoreTimingsConfig
from .errors.errors import ErrorCode, KubernetesError
from .integration.cluster_client import RESTORE_POINT_CONTENTS
from .restore.orchestrator import RestoreOutcome
from .restore.test_orchestrator import FakeCluster, seeded_cluster


@pytest.fixture
def config(tmp_path):
    return RecoveryConfig(restore=RestoreTimingsConfig(poll_interval=1, settle_delay=0, temp_dir=str(tmp_path)))


def run_with(cluster, config, argv):
    with patch('k10_vm_recovery.cli.load_config', return_value=config), \
            patch('k10_vm_recovery.cli.setup_logging'), \
            patch('k10_vm_recovery.cli.ClusterClient') as client_class:
        client_class.from_config.return_value = cluster
        return run(argv)


class TestArgumentParser:

    def test_restore_requires_restore_point(self):
        with pytest.raises(SystemExit) as exc:
            create_argument_parser().parse_args(['restore'])
        assert exc.value.code == 2

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args([])

    def test_discover_defaults(self):
        args = create_argument_parser().parse_args(['discover'])

        assert args.vm_only is True
        assert args.deleted_only is False
        assert args.show_disks is None
        assert args.output is None

    def test_global_options(self):
        args = create_argument_parser().parse_args(
            ['--config', 'c.yaml', '-v', 'restore', '--restore-point', 'rpc', '--resize-disk', 'a=1Gi',
             '--resize-disk', 'b=2Gi', '--yes']
        )

        assert args.config == 'c.yaml'
        assert args.verbose
        assert args.resize_disk == ['a=1Gi', 'b=2Gi']
        assert args.yes


class TestDiscoverCommand:

    def test_text(self, config, capsys):
        code = run_with(seeded_cluster(), config, ['discover'])

        out = capsys.readouterr().out
        assert code == 0
        assert "VM RESTORE POINTS FOUND: 1" in out
        assert "│  ├─ rootdisk (20Gi) - CSI Snapshot" in out

    def test_json(self, config, capsys):
        code = run_with(seeded_cluster(), config, ['discover', '--output', 'json'])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data["total"] == 1
        assert data["restorePoints"][0]["vm"] == "rhel9-vm"

    def test_no_disks(self, config, capsys):
        run_with(seeded_cluster(), config, ['discover', '--no-disks'])

        assert "Disks:" not in capsys.readouterr().out

    def test_nothing_found(self, config, capsys):
        code = run_with(FakeCluster(), config, ['discover'])

        assert code == 0
        assert capsys.readouterr().out == ""

    def test_cluster_error(self, config, capsys):
        cluster = seeded_cluster()
        cluster.failures["list"] = KubernetesError("list", "kubectl not found", code=ErrorCode.CONFIGURATION)

        assert run_with(cluster, config, ['discover']) == 1
        assert "✗ kubectl not found (check kubectl and the kubeconfig in use)" in capsys.readouterr().out


class TestRestoreCommand:

    def test_success(self, config, capsys):
        cluster = seeded_cluster(states=("Complete",))

        code = run_with(cluster, config, ['restore', '--restore-point', 'rpc-rhel9-vm-1', '--yes'])

        out = capsys.readouterr().out
        assert code == 0
        assert "✓ VM rhel9-vm restored to namespace vms-prod" in out
        assert "kubectl get events -n vms-prod --sort-by='.lastTimestamp'" in out
        assert "RESTORE PLAN" in out

    def test_dry_run(self, config, capsys):
        cluster = seeded_cluster()

        code = run_with(cluster, config, ['restore', '--restore-point', 'rpc-rhel9-vm-1', '--dry-run'])

        assert code == 0
        assert "Dry run completed" in capsys.readouterr().out
        assert cluster.mutations() == []

    def test_validate_only(self, config, capsys):
        code = run_with(seeded_cluster(), config, ['restore', '--restore-point', 'rpc-rhel9-vm-1', '--validate'])

        assert code == 0
        assert "✓ Validation passed" in capsys.readouterr().out

    def test_malformed_resize(self, config, capsys):
        cluster = seeded_cluster()

        code = run_with(cluster, config, ['restore', '--restore-point', 'rpc-rhel9-vm-1', '--resize-disk', 'rootdisk'])

        assert code == 2
        assert cluster.calls == []

    def test_invalid_option(self, config, capsys):
        code = run_with(seeded_cluster(), config,
                        ['restore', '--restore-point', 'rpc-rhel9-vm-1', '--vm-name', 'Bad_Name'])

        assert code == 2

    def test_failure(self, config, capsys):
        code = run_with(FakeCluster(), config, ['restore', '--restore-point', 'missing-rp', '--yes'])

        out = capsys.readouterr().out
        assert code == 1
        assert "✗ Restore failed (NotFound) in phase ContextResolved" in out
        assert "Restore point not found: missing-rp" in out


class TestTransformCommand:

    def test_stdout(self, config, capsys):
        code = run_with(seeded_cluster(), config, [
            'transform', '--restore-point', 'rpc-rhel9-vm-1', '--new-namespace', 'vms-dr',
            '--new-mac', '--transform-name', 'My_Transforms',
        ])

        out = capsys.readouterr().out
        assert code == 0
        documents = [d for d in yaml.safe_load_all(out) if d]
        assert len(documents) == 1
        transform_set = documents[0]
        assert transform_set["metadata"]["name"] == "my-transforms"
        assert transform_set["metadata"]["namespace"] == "kasten-io"
        assert transform_set["spec"]["transforms"][-1]["json"] == [
            {"op": "replace", "path": "/metadata/namespace", "value": "vms-dr"}
        ]
        assert "# 4. Change target namespace to: vms-dr" in out

    def test_default_name_has_timestamp(self, config, capsys):
        run_with(seeded_cluster(), config, ['transform', '--restore-point', 'rpc-rhel9-vm-1'])

        document = next(d for d in yaml.safe_load_all(capsys.readouterr().out) if d)
        assert document["metadata"]["name"].startswith("vm-restore-transforms-rhel9-vm-")

    def test_output_file(self, config, tmp_path, capsys):
        target = tmp_path / "transforms.yaml"

        code = run_with(seeded_cluster(), config, [
            'transform', '--restore-point', 'rpc-rhel9-vm-1', '--vm-name', 'web-clone', '--output', str(target)
        ])

        assert code == 0
        text = target.read_text()
        assert "Override VM name to: web-clone" in text
        assert f"Transforms written to: {target}" in capsys.readouterr().out

    def test_missing_restore_point(self, config):
        assert run_with(FakeCluster(), config, ['transform', '--restore-point', 'nope']) == 1

    def test_does_not_mutate(self, config):
        cluster = seeded_cluster()

        run_with(cluster, config, ['transform', '--restore-point', 'rpc-rhel9-vm-1'])

        assert cluster.mutations() == []
        assert ("get", RESTORE_POINT_CONTENTS, "rpc-rhel9-vm-1", None) in cluster.calls


class TestExitCodes:

    @pytest.mark.parametrize("outcome,code", [
        (RestoreOutcome.SUCCESS, 0),
        (RestoreOutcome.DRY_RUN, 0),
        (RestoreOutcome.VALIDATED_ONLY, 0),
        (RestoreOutcome.CANCELLED, 0),
        (RestoreOutcome.INVALID_INPUT, 2),
        (RestoreOutcome.VALIDATION_FAILED, 1),
        (RestoreOutcome.CONFLICT_CHECK_FAILED, 1),
        (RestoreOutcome.TIMEOUT_EXCEEDED, 1),
    ])
    def test_mapping(self, outcome, code):
        assert exit_code_for(outcome) == code

    def test_invalid_configuration(self, capsys):
        with patch('k10_vm_recovery.cli.load_config', side_effect=ValueError("poll_interval must be positive")):
            code = run(['discover'])

        assert code == 2
        assert "Invalid configuration" in capsys.readouterr().out


class TestConfiguration:

    def test_load_warnings_are_logged(self, config, caplog):
        config.load_warnings = ["Ignoring non-integer K10_VM_POLL_INTERVAL='soon'"]

        with caplog.at_level(logging.WARNING, logger="k10_vm_recovery.cli"):
            code = run_with(seeded_cluster(), config, ['discover'])

        assert code == 0
        assert "Configuration: Ignoring non-integer K10_VM_POLL_INTERVAL='soon'" in caplog.text

    def test_quoted_timings_from_file(self, tmp_path, capsys):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "restore:\n"
            "  poll_interval: '1'\n"
            "  restore_timeout: '60'\n"
            "  settle_delay: '0'\n"
            f"  temp_dir: {tmp_path}\n"
        )
        cluster = seeded_cluster(states=("Running", "Complete"))

        with patch.dict(os.environ, {}, clear=True), \
                patch('k10_vm_recovery.cli.setup_logging'), \
                patch('k10_vm_recovery.cli.time.sleep') as sleep, \
                patch('k10_vm_recovery.cli.ClusterClient') as client_class:
            client_class.from_config.return_value = cluster
            code = run(['--config', str(config_file), 'restore', '--restore-point', 'rpc-rhel9-vm-1', '--yes'])

        assert code == 0
        assert "✓ VM rhel9-vm restored to namespace vms-prod" in capsys.readouterr().out
        sleep.assert_any_call(1)


class TestJSONFormatter:

    def test_format(self):
        record = logging.LogRecord("k10_vm_recovery.cli", logging.WARNING, __file__, 1, "disk %s", ("rootdisk",), None)

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "k10_vm_recovery.cli"
        assert data["message"] == "disk rootdisk"
