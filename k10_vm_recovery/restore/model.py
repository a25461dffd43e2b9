"""
Typed view of a K10 RestorePointContent document.

parse() is the single place where the raw, loosely structured restore point
JSON is probed. It never raises: absent or malformed fields fall back to the
defaults documented on each dataclass, so the rest of the workflow can rely
on plain attributes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

APP_NAME_LABEL = "k10.kasten.io/appName"
APP_NAMESPACE_LABEL = "k10.kasten.io/appNamespace"
FREEZE_ANNOTATION = "k10.kasten.io/freezeVM"

DATAVOLUME_GROUP = "cdi.kubevirt.io"
DATAVOLUME_KIND = "datavolumes"
VM_GROUP = "kubevirt.io"
VM_KIND = "virtualmachines"

UNKNOWN = "unknown"
UNKNOWN_SIZE = "Unknown"
NOT_AVAILABLE = "N/A"


class RestoreMethod(Enum):
    """How a restore point can be materialized."""
    SNAPSHOT = "Snapshot"
    EXPORT = "Export"


@dataclass(frozen=True)
class RestorePointArtifact:
    """One entry of status.restorePointContentDetails.artifacts."""
    resource_group: str
    resource_kind: str
    resource_name: str
    spec_snapshot: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    has_volume_snapshot: bool = False


@dataclass(frozen=True)
class Disk:
    name: str
    requested_size: str = UNKNOWN_SIZE
    has_snapshot_artifact: bool = False


@dataclass(frozen=True)
class NetworkInterface:
    """A VM interface as recorded at backup time; index is its list position."""
    index: int
    name: str = ""
    mac_address: str = ""


@dataclass(frozen=True)
class VmResources:
    cpu_cores: str = NOT_AVAILABLE
    memory: str = NOT_AVAILABLE


@dataclass(frozen=True)
class RestorePointModel:
    """Read-only summary of one restore point."""
    name: str
    source_vm_name: str = UNKNOWN
    source_namespace: str = UNKNOWN
    disks: Tuple[Disk, ...] = ()
    vm_running_at_backup: bool = False
    vm_resources: VmResources = field(default_factory=VmResources)
    interfaces: Tuple[NetworkInterface, ...] = ()
    freeze_annotation_present: bool = False
    restore_methods_available: FrozenSet[RestoreMethod] = frozenset()
    has_vm_artifact: bool = False
    uses_run_strategy: bool = False
    has_app_name: bool = False
    has_app_namespace: bool = False

    @property
    def mac_addresses(self) -> List[str]:
        """MAC addresses of every interface that pins one, in interface order."""
        return [iface.mac_address for iface in self.interfaces if iface.mac_address]

    @property
    def state_at_backup(self) -> str:
        return "Running" if self.vm_running_at_backup else "Stopped"

    def disk_names(self) -> List[str]:
        return [disk.name for disk in self.disks]


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _as_text(value: Any, default: str) -> str:
    if value is None or value == "" or isinstance(value, (dict, list)):
        return default
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def parse_artifacts(document: Dict[str, Any]) -> List[RestorePointArtifact]:
    """Extract the artifact list, skipping entries without a resource block."""
    raw = _dig(document, "status", "restorePointContentDetails", "artifacts")
    if not isinstance(raw, list):
        return []

    artifacts = []
    for entry in raw:
        resource = _dig(entry, "resource")
        if not isinstance(resource, dict):
            continue
        spec_snapshot = entry.get("artifact")
        if not isinstance(spec_snapshot, dict):
            spec_snapshot = {}
        # Older documents nest the snapshot marker under the artifact itself
        snapshot = entry.get("volumeSnapshot")
        if snapshot is None:
            snapshot = spec_snapshot.get("volumeSnapshot")
        artifacts.append(RestorePointArtifact(
            resource_group=_as_text(resource.get("group"), ""),
            resource_kind=_as_text(resource.get("resource"), ""),
            resource_name=_as_text(resource.get("name"), ""),
            spec_snapshot=spec_snapshot,
            has_volume_snapshot=snapshot is not None,
        ))
    return artifacts


def _disk_size(spec_snapshot: Dict[str, Any]) -> str:
    size = _dig(spec_snapshot, "spec", "pvc", "resources", "requests", "storage")
    if size is None:
        size = _dig(spec_snapshot, "metadata", "spec", "pvc", "resources", "requests", "storage")
    return _as_text(size, UNKNOWN_SIZE)


def _interfaces(vm_spec: Dict[str, Any]) -> Tuple[NetworkInterface, ...]:
    raw = _dig(vm_spec, "spec", "template", "spec", "domain", "devices", "interfaces")
    if not isinstance(raw, list):
        return ()
    interfaces = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            entry = {}
        interfaces.append(NetworkInterface(
            index=index,
            name=_as_text(entry.get("name"), ""),
            mac_address=_as_text(entry.get("macAddress"), ""),
        ))
    return tuple(interfaces)


def parse(document: Optional[Dict[str, Any]]) -> RestorePointModel:
    """Build a RestorePointModel from a raw RestorePointContent document."""
    if not isinstance(document, dict):
        document = {}

    labels = _dig(document, "metadata", "labels")
    if not isinstance(labels, dict):
        labels = {}

    artifacts = parse_artifacts(document)

    disks = tuple(
        Disk(
            name=artifact.resource_name,
            requested_size=_disk_size(artifact.spec_snapshot),
            has_snapshot_artifact=artifact.has_volume_snapshot,
        )
        for artifact in artifacts
        if artifact.resource_group == DATAVOLUME_GROUP and artifact.resource_kind == DATAVOLUME_KIND
    )

    vm_artifact = next(
        (a for a in artifacts if a.resource_group == VM_GROUP and a.resource_kind == VM_KIND),
        None
    )
    vm_spec = vm_artifact.spec_snapshot if vm_artifact else {}

    methods = set()
    if any(disk.has_snapshot_artifact for disk in disks):
        methods.add(RestoreMethod.SNAPSHOT)
    if _dig(document, "status", "restorePointContentDetails", "exportData", "enabled") is True:
        methods.add(RestoreMethod.EXPORT)

    annotations = _dig(vm_spec, "metadata", "annotations")
    freeze = annotations.get(FREEZE_ANNOTATION) if isinstance(annotations, dict) else None

    return RestorePointModel(
        name=_as_text(_dig(document, "metadata", "name"), ""),
        source_vm_name=_as_text(labels.get(APP_NAME_LABEL), UNKNOWN),
        source_namespace=_as_text(labels.get(APP_NAMESPACE_LABEL), UNKNOWN),
        disks=disks,
        vm_running_at_backup=_dig(vm_spec, "spec", "running") is True,
        vm_resources=VmResources(
            cpu_cores=_as_text(_dig(vm_spec, "spec", "template", "spec", "domain", "cpu", "cores"),
                               NOT_AVAILABLE),
            memory=_as_text(_dig(vm_spec, "spec", "template", "spec", "domain", "resources",
                                 "requests", "memory"), NOT_AVAILABLE),
        ),
        interfaces=_interfaces(vm_spec),
        freeze_annotation_present=str(freeze).lower() == "true",
        restore_methods_available=frozenset(methods),
        has_vm_artifact=vm_artifact is not None,
        uses_run_strategy=_dig(vm_spec, "spec", "runStrategy") is not None,
        has_app_name=bool(labels.get(APP_NAME_LABEL)),
        has_app_namespace=bool(labels.get(APP_NAMESPACE_LABEL)),
    )
