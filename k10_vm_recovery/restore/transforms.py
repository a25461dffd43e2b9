"""
Transform synthesis for VM restores.

K10 restores DataVolumes and their PVCs from snapshots, but CDI would try to
re-import them unless told the claims are already populated. synthesize()
produces the JSON-patch rules that make the two cooperate, and the helpers
below wrap them into a TransformSet and a RestoreAction manifest.

Rule order is significant: DataVolume, PVC and VirtualMachine rules come
first; the namespace rule matches every kind and is always last.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import yaml

from .model import RestorePointModel
from .naming import ResolvedNames
from .options import RestoreOptions

TRANSFORM_SET_API_VERSION = "config.kio.kasten.io/v1alpha1"
RESTORE_ACTION_API_VERSION = "actions.kio.kasten.io/v1alpha1"

LABEL_SOURCE_VM = "k10-vm-utils.io/source-vm"
LABEL_SOURCE_NAMESPACE = "k10-vm-utils.io/source-namespace"
LABEL_GENERATED_BY = "k10-vm-utils.io/generated-by"
LABEL_CREATED_BY = "k10-vm-utils.io/created-by"
ANNOTATION_RESTORE_POINT = "k10-vm-utils.io/restore-point"
ANNOTATION_GENERATED_AT = "k10-vm-utils.io/generated-at"
ANNOTATION_SOURCE_RESTORE_POINT = "k10-vm-utils.io/source-restore-point"
ANNOTATION_CREATED_AT = "k10-vm-utils.io/created-at"

CDI_POPULATED_FOR = "cdi.kubevirt.io/storage.populatedFor"
CDI_BOUND = "cdi.kubevirt.io/storage.condition.bound"
CDI_BOUND_REASON = "cdi.kubevirt.io/storage.condition.bound.reason"

MATCH_ALL = ".*"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def escape_pointer(segment: str) -> str:
    """Escape one JSON pointer segment (RFC 6901)."""
    return segment.replace("~", "~0").replace("/", "~1")


def annotation_path(key: str) -> str:
    return f"/metadata/annotations/{escape_pointer(key)}"


def _op(op: str, path: str, *value) -> Dict[str, Any]:
    operation = {"op": op, "path": path}
    if value:
        operation["value"] = value[0]
    return operation


def _exact(name: str) -> str:
    return f"^{name.replace('.', '[.]')}$"


@dataclass
class TransformRule:
    """One TransformSet entry: a subject and the patch applied to it."""
    name_match_pattern: str = MATCH_ALL
    subject_resource_kind: Optional[str] = None
    subject_resource_group: Optional[str] = None
    operations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        subject = {}
        if self.subject_resource_kind:
            subject["resource"] = self.subject_resource_kind
        if self.subject_resource_group:
            subject["group"] = self.subject_resource_group
        subject["resourceNameRegex"] = self.name_match_pattern
        return {"subject": subject, "json": [dict(op) for op in self.operations]}


def _datavolume_rules(options: RestoreOptions) -> List[TransformRule]:
    rule = TransformRule(
        subject_resource_kind="datavolumes",
        subject_resource_group="cdi.kubevirt.io",
        operations=[
            _op("remove", "/spec/source"),
            _op("add", annotation_path(CDI_POPULATED_FOR), "{{.spec.pvc.name}}"),
        ],
    )
    if options.new_storage_class:
        rule.operations.append(_op("replace", "/spec/pvc/storageClassName", options.new_storage_class))

    rules = [rule]
    for disk, size in options.resize_disks.items():
        rules.append(TransformRule(
            name_match_pattern=_exact(disk),
            subject_resource_kind="datavolumes",
            subject_resource_group="cdi.kubevirt.io",
            operations=[_op("replace", "/spec/pvc/resources/requests/storage", size)],
        ))
    return rules


def _pvc_rules(options: RestoreOptions) -> List[TransformRule]:
    rule = TransformRule(
        subject_resource_kind="persistentvolumeclaims",
        operations=[
            _op("add", annotation_path(CDI_BOUND), "true"),
            _op("add", annotation_path(CDI_BOUND_REASON), "Bound"),
        ],
    )
    if options.new_storage_class:
        rule.operations.append(_op("replace", "/spec/storageClassName", options.new_storage_class))

    rules = [rule]
    for disk, size in options.resize_disks.items():
        rules.append(TransformRule(
            name_match_pattern=_exact(disk),
            subject_resource_kind="persistentvolumeclaims",
            operations=[_op("replace", "/spec/resources/requests/storage", size)],
        ))
    return rules


def _vm_rule(model: RestorePointModel, options: RestoreOptions,
             vm_name_override: Optional[str]) -> TransformRule:
    # Restored DataVolumes already exist; templates would trigger a new import
    rule = TransformRule(
        subject_resource_kind="virtualmachines",
        subject_resource_group="kubevirt.io",
        operations=[_op("replace", "/spec/dataVolumeTemplates", [])],
    )
    if options.regenerate_mac:
        for iface in model.interfaces:
            if iface.mac_address:
                rule.operations.append(_op(
                    "remove", f"/spec/template/spec/domain/devices/interfaces/{iface.index}/macAddress"
                ))
    if vm_name_override:
        rule.operations.append(_op("replace", "/metadata/name", vm_name_override))
    return rule


def synthesize(model: RestorePointModel, options: RestoreOptions,
               vm_name_override: Optional[str] = None,
               source_namespace: Optional[str] = None) -> List[TransformRule]:
    """Build the ordered transform rules for restoring model with options.

    Args:
        model: Parsed restore point.
        options: Restore options; storage class, MAC, resize and target
            namespace settings are read from here.
        vm_name_override: Name to give the restored VM, if it differs from
            the backed-up one.
        source_namespace: Namespace the VM was backed up from. Defaults to
            the option value, then the restore point label.
    """
    source_namespace = source_namespace or options.source_namespace or model.source_namespace

    rules = _datavolume_rules(options)
    rules.extend(_pvc_rules(options))
    rules.append(_vm_rule(model, options, vm_name_override))

    if options.target_namespace and options.target_namespace != source_namespace:
        rules.append(TransformRule(
            operations=[_op("replace", "/metadata/namespace", options.target_namespace)],
        ))

    return rules


def _timestamp(when: datetime) -> str:
    return when.strftime(TIMESTAMP_FORMAT)


def build_transform_set(rules: List[TransformRule], name: str, namespace: str,
                        model: RestorePointModel, generated_at: datetime) -> Dict[str, Any]:
    """Wrap rules into a TransformSet manifest."""
    return {
        "apiVersion": TRANSFORM_SET_API_VERSION,
        "kind": "TransformSet",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {
                LABEL_SOURCE_VM: model.source_vm_name,
                LABEL_SOURCE_NAMESPACE: model.source_namespace,
                LABEL_GENERATED_BY: "k10-vm-transform",
            },
            "annotations": {
                ANNOTATION_RESTORE_POINT: model.name,
                ANNOTATION_GENERATED_AT: _timestamp(generated_at),
            },
        },
        "spec": {"transforms": [rule.to_dict() for rule in rules]},
    }


def render_transform_set(document: Dict[str, Any]) -> str:
    """Render a TransformSet manifest as commented YAML."""
    labels = document["metadata"]["labels"]
    header = [
        "---",
        "# Generated VM Restore TransformSet",
        f"# Source VM: {labels[LABEL_SOURCE_VM]}",
        f"# Source Namespace: {labels[LABEL_SOURCE_NAMESPACE]}",
        f"# Generated: {document['metadata']['annotations'][ANNOTATION_GENERATED_AT]}",
        "",
    ]
    body = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
    return "\n".join(header) + body


def transform_summary(options: RestoreOptions, vm_name_override: Optional[str] = None,
                      transform_name: str = "", transform_namespace: str = "",
                      namespace_changed: bool = False) -> str:
    """Describe in plain words what a generated TransformSet will do."""
    steps = [
        "Disable CDI import/clone operations on DataVolumes",
        "Add CDI bound annotations to PVCs",
        "Clear dataVolumeTemplates on VirtualMachine",
    ]
    if options.new_storage_class:
        steps.append(f"Update storage class to: {options.new_storage_class}")
    for disk, size in options.resize_disks.items():
        steps.append(f"Resize disk {disk} to: {size}")
    if namespace_changed and options.target_namespace:
        steps.append(f"Change target namespace to: {options.target_namespace}")
    if options.regenerate_mac:
        steps.append("Remove MAC addresses (new ones will be generated)")
    if vm_name_override:
        steps.append(f"Override VM name to: {vm_name_override}")

    lines = ["---", "# Transform Summary", "#", "# This TransformSet will:"]
    lines.extend(f"# {i}. {step}" for i, step in enumerate(steps, 1))
    lines.extend([
        "#",
        "# Usage:",
        "# 1. Review the transforms above",
        "# 2. Apply: kubectl apply -f <this-file>",
        "# 3. Reference in RestoreAction:",
        "#    spec:",
        "#      transforms:",
        f"#        - name: {transform_name or '<transform-name>'}",
        f"#          namespace: {transform_namespace or '<k10-namespace>'}",
    ])
    return "\n".join(lines) + "\n"


def build_restore_action(names: ResolvedNames, target_namespace: str, restore_point_name: str,
                         transform_name: str, transform_namespace: str,
                         created_at: datetime) -> Dict[str, Any]:
    """Build the RestoreAction manifest referencing a restore point and TransformSet."""
    return {
        "apiVersion": RESTORE_ACTION_API_VERSION,
        "kind": "RestoreAction",
        "metadata": {
            "name": names.restore_action_name,
            "namespace": target_namespace,
            "labels": {
                "k10.kasten.io/appName": names.final_vm_name,
                "k10.kasten.io/appNamespace": target_namespace,
                LABEL_CREATED_BY: "k10-vm-restore",
            },
            "annotations": {
                ANNOTATION_SOURCE_RESTORE_POINT: restore_point_name,
                ANNOTATION_CREATED_AT: _timestamp(created_at),
            },
        },
        "spec": {
            "subject": {
                "namespace": target_namespace,
                "restorePointContentName": restore_point_name,
            },
            "transforms": [
                {"name": transform_name, "namespace": transform_namespace},
            ],
        },
    }
