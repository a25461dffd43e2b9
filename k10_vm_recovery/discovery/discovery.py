#!/usr/bin/env python3
"""
Restore Point Discovery

Lists K10 restore points, keeps the ones that belong to virtual machines and
renders a per-restore-point summary as a text tree or JSON.

Active VMs are fetched with one cluster-wide list per invocation and looked up
in a set, never with one existence check per restore point.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from ..integration.cluster_client import RESTORE_POINT_CONTENTS, VIRTUAL_MACHINES
from ..restore.model import APP_NAME_LABEL, APP_NAMESPACE_LABEL, FREEZE_ANNOTATION, RestoreMethod, RestorePointModel, parse

logger = logging.getLogger(__name__)

SEPARATOR = "━" * 66


@dataclass(frozen=True)
class ClassifiedRestorePoint:
    """A restore point with its VM classification."""
    model: RestorePointModel
    is_vm: bool
    vm_active: bool

    @property
    def vm_deleted(self) -> bool:
        return not self.vm_active


def build_query_args(vm_name: Optional[str] = None, namespace: Optional[str] = None,
                     label_selector: Optional[str] = None) -> Dict[str, Any]:
    """Keyword arguments for ClusterClient.list selecting the wanted restore points.

    VM and namespace together select by the K10 app labels, a namespace alone
    scopes the list, a label selector is passed through, and anything else
    lists across all namespaces.
    """
    if vm_name and namespace:
        return {
            'label_selector': f"{APP_NAME_LABEL}={vm_name},{APP_NAMESPACE_LABEL}={namespace}",
            'all_namespaces': True,
        }
    if namespace:
        return {'namespace': namespace}
    if label_selector:
        return {'label_selector': label_selector, 'all_namespaces': True}
    return {'all_namespaces': True}


def fetch_restore_points(cluster, vm_name: Optional[str] = None, namespace: Optional[str] = None,
                         label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
    return cluster.list(RESTORE_POINT_CONTENTS, **build_query_args(vm_name, namespace, label_selector))


def vm_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def build_active_vm_index(cluster) -> Set[str]:
    """Set of namespace/name for every VirtualMachine currently in the cluster."""
    index = set()
    for vm in cluster.list(VIRTUAL_MACHINES, all_namespaces=True):
        metadata = vm.get('metadata') or {}
        if metadata.get('name') and metadata.get('namespace'):
            index.add(vm_key(metadata['namespace'], metadata['name']))
    logger.debug(f"Active VM index holds {len(index)} VM(s)")
    return index


def classify(documents: Iterable[Dict[str, Any]], active_index: Set[str],
             vm_only: bool = True, deleted_only: bool = False) -> List[ClassifiedRestorePoint]:
    """Classify restore points, keeping input order.

    A restore point is VM-related if it carries a VirtualMachine artifact or
    its app labels name a VM present in active_index.
    """
    classified = []
    for document in documents:
        model = parse(document)
        active = (model.has_app_name and model.has_app_namespace
                  and vm_key(model.source_namespace, model.source_vm_name) in active_index)
        is_vm = model.has_vm_artifact or active

        if vm_only and not is_vm:
            continue
        if deleted_only and active:
            continue
        classified.append(ClassifiedRestorePoint(model=model, is_vm=is_vm, vm_active=active))
    return classified


def discover(cluster, vm_name: Optional[str] = None, namespace: Optional[str] = None,
             label_selector: Optional[str] = None, vm_only: bool = True,
             deleted_only: bool = False) -> List[ClassifiedRestorePoint]:
    """Fetch, index and classify restore points in one pass."""
    logger.info("Discovering VM restore points...")
    documents = fetch_restore_points(cluster, vm_name, namespace, label_selector)
    if not documents:
        logger.warning("No restore points found")
        return []

    logger.info(f"Found {len(documents)} restore point(s), filtering for VMs...")
    active_index = build_active_vm_index(cluster) if (vm_only or deleted_only) else set()
    results = classify(documents, active_index, vm_only=vm_only, deleted_only=deleted_only)

    if not results:
        if deleted_only:
            logger.warning("No deleted VMs with restore points found")
        else:
            logger.warning("No VM restore points found")
    return results


# Field projections shared by both renderers

def disk_type(has_snapshot: bool) -> str:
    return "CSI Snapshot" if has_snapshot else "Export"


def format_resources(model: RestorePointModel) -> str:
    return f"CPU: {model.vm_resources.cpu_cores}, Memory: {model.vm_resources.memory}"


def format_mac(model: RestorePointModel) -> str:
    macs = model.mac_addresses
    return f"Yes ({macs[0]})" if macs else "No"


def format_freeze(model: RestorePointModel) -> str:
    return f"{FREEZE_ANNOTATION}=true" if model.freeze_annotation_present else "None"


def format_methods(model: RestorePointModel) -> str:
    methods = [m.value for m in RestoreMethod if m in model.restore_methods_available]
    return f"[{','.join(methods)}]"


def _render_item(model: RestorePointModel, show_disks: bool) -> List[str]:
    lines = [
        f"Name: {model.name}",
        f"├─ VM: {model.source_vm_name}",
        f"├─ Namespace: {model.source_namespace}",
        f"├─ State: {model.state_at_backup}",
        f"├─ Resources: {format_resources(model)}",
    ]
    if show_disks:
        lines.append("├─ Disks:")
        if model.disks:
            lines.extend(
                f"│  ├─ {disk.name} ({disk.requested_size}) - {disk_type(disk.has_snapshot_artifact)}"
                for disk in model.disks
            )
        else:
            lines.append("│  └─ No disks found")
    lines.extend([
        f"├─ MAC Preserved: {format_mac(model)}",
        f"├─ Freeze Annotation: {format_freeze(model)}",
        f"└─ Restore Methods: {format_methods(model)}",
        "",
    ])
    return lines


def render_text(items: List[ClassifiedRestorePoint], show_disks: bool = True) -> str:
    lines = ["", SEPARATOR, f"VM RESTORE POINTS FOUND: {len(items)}", SEPARATOR, ""]
    for item in items:
        lines.extend(_render_item(item.model, show_disks))
    lines.append(SEPARATOR)
    return "\n".join(lines) + "\n"


def to_summary(model: RestorePointModel) -> Dict[str, Any]:
    return {
        'name': model.name,
        'vm': model.source_vm_name,
        'namespace': model.source_namespace,
        'state': model.state_at_backup,
        'resources': format_resources(model),
        'disks': [
            {'name': d.name, 'size': d.requested_size, 'type': disk_type(d.has_snapshot_artifact)}
            for d in model.disks
        ],
        'macPreserved': format_mac(model),
        'macAddresses': model.mac_addresses,
        'freezeAnnotation': format_freeze(model),
        'restoreMethods': format_methods(model),
    }


def render_json(items: List[ClassifiedRestorePoint]) -> str:
    return json.dumps({
        'total': len(items),
        'restorePoints': [to_summary(item.model) for item in items],
    }, indent=2)
