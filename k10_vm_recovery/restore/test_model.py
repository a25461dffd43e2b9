"""
Tests for restore point parsing.
"""

import pytest

from .model import (
    Disk, NetworkInterface, RestoreMethod, RestorePointModel, UNKNOWN, parse, parse_artifacts
)


def restore_point(name="rpc-rhel9-vm-1", labels=None, artifacts=None, export_enabled=None):
    """Build a RestorePointContent document shaped like the K10 API returns."""
    details = {"artifacts": artifacts if artifacts is not None else []}
    if export_enabled is not None:
        details["exportData"] = {"enabled": export_enabled}
    return {
        "apiVersion": "apps.kio.kasten.io/v1alpha1",
        "kind": "RestorePointContent",
        "metadata": {
            "name": name,
            "labels": labels if labels is not None else {
                "k10.kasten.io/appName": "rhel9-vm",
                "k10.kasten.io/appNamespace": "vms-prod",
            },
        },
        "status": {"restorePointContentDetails": details},
    }


def datavolume_artifact(name, size="20Gi", snapshot=True, nested=False):
    pvc = {"pvc": {"resources": {"requests": {"storage": size}}}}
    artifact = {"metadata": {"spec": pvc}} if nested else {"spec": pvc}
    entry = {
        "resource": {"group": "cdi.kubevirt.io", "resource": "datavolumes", "name": name},
        "artifact": artifact,
    }
    if snapshot:
        entry["volumeSnapshot"] = {"name": f"snap-{name}"}
    return entry


def vm_artifact(name="rhel9-vm", running=True, macs=("02:00:00:00:00:01",), freeze=None,
                cores=2, memory="4Gi"):
    spec = {
        "metadata": {"name": name, "annotations": {}},
        "spec": {
            "running": running,
            "template": {"spec": {"domain": {
                "cpu": {"cores": cores},
                "resources": {"requests": {"memory": memory}},
                "devices": {"interfaces": [
                    {"name": f"nic{i}", "masquerade": {}, **({"macAddress": mac} if mac else {})}
                    for i, mac in enumerate(macs)
                ]},
            }}},
        },
    }
    if freeze is not None:
        spec["metadata"]["annotations"]["k10.kasten.io/freezeVM"] = freeze
    return {
        "resource": {"group": "kubevirt.io", "resource": "virtualmachines", "name": name},
        "artifact": spec,
    }


class TestParse:

    def test_full_document(self):
        doc = restore_point(
            artifacts=[datavolume_artifact("rootdisk"), vm_artifact(freeze="true")],
            export_enabled=True,
        )

        model = parse(doc)

        assert model.name == "rpc-rhel9-vm-1"
        assert model.source_vm_name == "rhel9-vm"
        assert model.source_namespace == "vms-prod"
        assert model.disks == (Disk("rootdisk", "20Gi", True),)
        assert model.vm_running_at_backup is True
        assert model.vm_resources.cpu_cores == "2"
        assert model.vm_resources.memory == "4Gi"
        assert model.mac_addresses == ["02:00:00:00:00:01"]
        assert model.freeze_annotation_present is True
        assert model.restore_methods_available == {RestoreMethod.SNAPSHOT, RestoreMethod.EXPORT}
        assert model.has_vm_artifact
        assert model.has_app_name and model.has_app_namespace

    def test_no_datavolumes(self):
        model = parse(restore_point(artifacts=[vm_artifact()]))

        assert model.disks == ()
        assert RestoreMethod.SNAPSHOT not in model.restore_methods_available

    def test_snapshot_and_export(self):
        model = parse(restore_point(artifacts=[datavolume_artifact("rootdisk")], export_enabled=True))
        assert model.restore_methods_available == frozenset({RestoreMethod.SNAPSHOT, RestoreMethod.EXPORT})

    def test_export_only(self):
        model = parse(restore_point(artifacts=[datavolume_artifact("rootdisk", snapshot=False)],
                                    export_enabled=True))
        assert model.restore_methods_available == frozenset({RestoreMethod.EXPORT})

    def test_nested_metadata_spec_size(self):
        model = parse(restore_point(artifacts=[datavolume_artifact("data", size="100Gi", nested=True)]))
        assert model.disks[0].requested_size == "100Gi"

    def test_missing_size(self):
        doc = restore_point(artifacts=[{
            "resource": {"group": "cdi.kubevirt.io", "resource": "datavolumes", "name": "data"},
        }])
        assert parse(doc).disks[0].requested_size == "Unknown"

    def test_every_interface_is_read(self):
        model = parse(restore_point(artifacts=[
            vm_artifact(macs=("02:00:00:00:00:01", "02:00:00:00:00:02"))
        ]))

        assert model.mac_addresses == ["02:00:00:00:00:01", "02:00:00:00:00:02"]
        assert [i.index for i in model.interfaces] == [0, 1]

    def test_interface_without_mac_keeps_index(self):
        model = parse(restore_point(artifacts=[vm_artifact(macs=("", "02:00:00:00:00:02"))]))

        assert model.interfaces[1] == NetworkInterface(1, "nic1", "02:00:00:00:00:02")
        assert model.mac_addresses == ["02:00:00:00:00:02"]

    def test_disks_filtered_by_exact_group(self):
        doc = restore_point(artifacts=[
            {"resource": {"group": "example.com", "resource": "datavolumes", "name": "foreign"}},
            {"resource": {"group": "cdi.kubevirt.io", "resource": "datasources", "name": "src"}},
            datavolume_artifact("rootdisk"),
        ])
        assert parse(doc).disk_names() == ["rootdisk"]

    def test_disk_order_preserved(self):
        doc = restore_point(artifacts=[datavolume_artifact(n) for n in ("rootdisk", "data-a", "data-b")])
        assert parse(doc).disk_names() == ["rootdisk", "data-a", "data-b"]

    def test_missing_labels(self):
        model = parse(restore_point(labels={}))

        assert model.source_vm_name == UNKNOWN
        assert model.source_namespace == UNKNOWN
        assert not model.has_app_name

    def test_stopped_vm_without_run_flag(self):
        model = parse(restore_point(artifacts=[{
            "resource": {"group": "kubevirt.io", "resource": "virtualmachines", "name": "vm"},
            "artifact": {"spec": {"runStrategy": "Always"}},
        }]))

        assert model.vm_running_at_backup is False
        assert model.uses_run_strategy is True
        assert model.vm_resources.cpu_cores == "N/A"
        assert model.state_at_backup == "Stopped"

    @pytest.mark.parametrize("document", [
        None,
        {},
        [],
        "not a document",
        {"metadata": "oops"},
        {"status": {"restorePointContentDetails": {"artifacts": "nope"}}},
        {"status": {"restorePointContentDetails": {"artifacts": [None, 3, {"resource": None}]}}},
        {"status": {"restorePointContentDetails": {"artifacts": [
            {"resource": {"group": "kubevirt.io", "resource": "virtualmachines"},
             "artifact": {"spec": {"template": {"spec": {"domain": {"devices": {"interfaces": [None]}}}}}}}
        ]}}},
    ])
    def test_malformed_documents_never_raise(self, document):
        model = parse(document)

        assert isinstance(model, RestorePointModel)
        assert model.disks == ()
        assert model.source_vm_name == UNKNOWN


def test_parse_artifacts_skips_entries_without_resource():
    doc = restore_point(artifacts=[{"artifact": {}}, datavolume_artifact("rootdisk")])

    artifacts = parse_artifacts(doc)

    assert len(artifacts) == 1
    assert artifacts[0].resource_name == "rootdisk"
    assert artifacts[0].has_volume_snapshot
