#!/usr/bin/env python3
"""
VM Restore Orchestrator

Drives a single VM restore from a K10 restore point: resolves the VM and
namespaces, validates the cluster, picks names (cloning on conflict when
asked), applies transforms, creates the RestoreAction, polls it to
completion, then reconciles and verifies the restored VM.

All phases are synchronous. The only waits are the RestoreAction status poll
and the VM/VMI existence polls after it. Mutating calls are never retried.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import yaml

from ..config.loader import K10Config, RestoreTimingsConfig
from ..config.validator import validate_restore_options
from ..errors.errors import ErrorCode, KubernetesError, MultiError, RestoreError, new_validation_error
from ..integration.cluster_client import (
    DATA_VOLUMES, NAMESPACES, PVCS, RESOURCE_QUOTAS, RESTORE_ACTIONS, RESTORE_POINT_CONTENTS,
    STORAGE_CLASSES, TRANSFORM_SETS, VIRTUAL_MACHINE_INSTANCES, VIRTUAL_MACHINES, VOLUME_SNAPSHOT_CLASSES
)
from ..security.secure_files import SecurityError, load_yaml_documents, remove_file, write_private_file
from .model import RestorePointModel, parse
from .naming import ResolvedNames, compute_restore_names, resolve_clone_name
from .options import RestoreOptions
from .transforms import build_restore_action, build_transform_set, render_transform_set, synthesize

logger = logging.getLogger(__name__)

REQUIRED_CRDS = [
    RESTORE_POINT_CONTENTS,
    VIRTUAL_MACHINES,
    DATA_VOLUMES,
]
SNAPSHOT_CLASS_SELECTOR = "k10.kasten.io/is-snapshot-class=true"
NAMESPACE_CREATED_BY = {"k10-vm-utils.io/created-by": "vm-recovery-utility"}
RUNNING_STRATEGIES = {"Always", "RerunOnFailure"}


class RestorePhase(Enum):
    """Restore workflow states"""
    INIT = "Init"
    CONTEXT_RESOLVED = "ContextResolved"
    VALIDATED = "Validated"
    NAMES_COMPUTED = "NamesComputed"
    CONFLICT_CHECK = "ConflictCheck"
    TRANSFORMS_READY = "TransformsReady"
    TRANSFORMS_APPLIED = "TransformsApplied"
    ACTION_CREATED = "ActionCreated"
    MONITORING = "Monitoring"
    POST_ACTIONS = "PostActions"
    VERIFIED = "Verified"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    DRY_RUN_EXIT = "DryRunExit"
    VALIDATE_ONLY_EXIT = "ValidateOnlyExit"


class RestoreOutcome(Enum):
    """Final result kinds of a restore"""
    SUCCESS = "Success"
    DRY_RUN = "DryRun"
    VALIDATED_ONLY = "ValidatedOnly"
    CANCELLED = "Cancelled"
    INVALID_INPUT = "InvalidInput"
    VALIDATION_FAILED = "ValidationFailed"
    NOT_FOUND = "NotFound"
    MISSING_IDENTITY = "MissingIdentity"
    CONFLICT_CHECK_FAILED = "ConflictCheckFailed"
    NAMESPACE_FAILED = "NamespaceFailed"
    TRANSFORM_APPLY_FAILED = "TransformApplyFailed"
    ACTION_CREATE_FAILED = "ActionCreateFailed"
    RESTORE_FAILED = "RestoreFailed"
    TIMEOUT_EXCEEDED = "TimeoutExceeded"
    VERIFICATION_FAILED = "VerificationFailed"

    @property
    def successful(self) -> bool:
        return self in (RestoreOutcome.SUCCESS, RestoreOutcome.DRY_RUN,
                        RestoreOutcome.VALIDATED_ONLY, RestoreOutcome.CANCELLED)


# Outcome reported for an unexpected cluster error in each phase
PHASE_FAILURE_OUTCOMES = {
    RestorePhase.CONTEXT_RESOLVED: RestoreOutcome.NOT_FOUND,
    RestorePhase.VALIDATED: RestoreOutcome.VALIDATION_FAILED,
    RestorePhase.NAMES_COMPUTED: RestoreOutcome.CONFLICT_CHECK_FAILED,
    RestorePhase.CONFLICT_CHECK: RestoreOutcome.CONFLICT_CHECK_FAILED,
    RestorePhase.TRANSFORMS_READY: RestoreOutcome.TRANSFORM_APPLY_FAILED,
    RestorePhase.TRANSFORMS_APPLIED: RestoreOutcome.TRANSFORM_APPLY_FAILED,
    RestorePhase.ACTION_CREATED: RestoreOutcome.ACTION_CREATE_FAILED,
    RestorePhase.MONITORING: RestoreOutcome.RESTORE_FAILED,
    RestorePhase.POST_ACTIONS: RestoreOutcome.RESTORE_FAILED,
    RestorePhase.VERIFIED: RestoreOutcome.VERIFICATION_FAILED,
}


@dataclass
class VerificationReport:
    """State of the restored VM and its storage"""
    vm_name: str
    namespace: str
    vm_exists: bool = False
    state: str = "Unknown"
    datavolume_phases: Dict[str, str] = field(default_factory=dict)
    pvc_phases: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vmName': self.vm_name,
            'namespace': self.namespace,
            'vmExists': self.vm_exists,
            'state': self.state,
            'dataVolumes': dict(self.datavolume_phases),
            'pvcs': dict(self.pvc_phases),
            'warnings': list(self.warnings),
        }


@dataclass
class RestoreSession:
    """Working state of one restore, owned by the orchestrator"""
    options: RestoreOptions
    phase: RestorePhase = RestorePhase.INIT
    model: Optional[RestorePointModel] = None
    vm_name: str = ""
    source_namespace: str = ""
    target_namespace: str = ""
    k10_namespace: str = ""
    names: Optional[ResolvedNames] = None
    cloned: bool = False
    already_restored: bool = False
    namespace_exists: bool = True
    custom_documents: List[Dict[str, Any]] = field(default_factory=list)
    transform_file: Optional[str] = None
    transform_name: str = ""
    transform_namespace: str = ""
    generated_file: Optional[str] = None
    plan: str = ""
    last_state: str = ""
    history: List[RestorePhase] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


@dataclass
class RestoreResult:
    """Final result of a restore"""
    outcome: RestoreOutcome
    phase: RestorePhase
    restore_point: str
    vm_name: str = ""
    target_namespace: str = ""
    names: Optional[ResolvedNames] = None
    cloned: bool = False
    plan: str = ""
    last_state: str = ""
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    details: Optional[str] = None
    verification: Optional[VerificationReport] = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.outcome.successful

    def to_dict(self) -> Dict[str, Any]:
        return {
            'outcome': self.outcome.value,
            'phase': self.phase.value,
            'restorePoint': self.restore_point,
            'vmName': self.vm_name,
            'targetNamespace': self.target_namespace,
            'transformSet': self.names.transform_set_name if self.names else None,
            'restoreAction': self.names.restore_action_name if self.names else None,
            'cloned': self.cloned,
            'lastState': self.last_state,
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'verification': self.verification.to_dict() if self.verification else None,
            'duration': round(self.duration, 2),
        }


def prompt_yes_no(message: str) -> bool:
    """Ask a yes/no question on the terminal; anything but y/yes is no."""
    try:
        response = input(f"\n{message} [y/N] ")
    except EOFError:
        return False
    return response.strip().lower() in ("y", "yes")


class RestoreOrchestrator:
    """Runs the VM restore state machine against a cluster client."""

    def __init__(self, cluster, timings: Optional[RestoreTimingsConfig] = None,
                 k10: Optional[K10Config] = None,
                 sleep_fn: Callable[[float], None] = time.sleep,
                 clock: Optional[Callable[[], datetime]] = None,
                 confirm: Callable[[str], bool] = prompt_yes_no,
                 echo: Callable[[str], None] = print):
        """
        Args:
            cluster: ClusterClient (or a double with the same methods).
            timings: Poll interval and timeouts.
            k10: K10 namespace settings.
            sleep_fn: Used for every wait; tests pass a no-op.
            clock: Source of timestamps written into manifests.
            confirm: Yes/no prompt, bypassed by auto_confirm.
            echo: Sink for the human-readable restore plan.
        """
        self.cluster = cluster
        self.timings = timings or RestoreTimingsConfig()
        self.k10 = k10 or K10Config()
        self.sleep_fn = sleep_fn
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.confirm = confirm
        self.echo = echo

    # State handling

    def _transition(self, session: RestoreSession, phase: RestorePhase) -> None:
        logger.info(f"Restore {session.options.restore_point}: {session.phase.value} -> {phase.value}")
        session.history.append(session.phase)
        session.phase = phase

    def _result(self, session: RestoreSession, outcome: RestoreOutcome,
                details: Optional[str] = None,
                verification: Optional[VerificationReport] = None) -> RestoreResult:
        duration = (datetime.now(timezone.utc) - session.started_at).total_seconds()
        return RestoreResult(
            outcome=outcome,
            phase=session.phase,
            restore_point=session.options.restore_point,
            vm_name=session.names.final_vm_name if session.names else session.vm_name,
            target_namespace=session.target_namespace,
            names=session.names,
            cloned=session.cloned,
            plan=session.plan,
            last_state=session.last_state,
            warnings=list(session.warnings),
            errors=list(session.errors),
            details=details,
            verification=verification,
            duration=duration,
        )

    def _fail(self, session: RestoreSession, error: RestoreError) -> RestoreResult:
        where = f" ({error.object_name})" if error.object_name else ""
        logger.error(f"Restore failed in phase {session.phase.value}{where}: {error.message}")
        if error.details:
            logger.error(f"Details:\n{error.details}")
        session.errors.append(error.message)
        failed_in = session.phase
        self._transition(session, RestorePhase.FAILED)
        result = self._result(session, error.outcome, details=error.details)
        result.phase = failed_in
        return result

    def _error(self, session: RestoreSession, outcome: RestoreOutcome, message: str,
               object_name: str = "", cause: Optional[Exception] = None,
               details: Optional[str] = None,
               code: ErrorCode = ErrorCode.RESTORE_OPERATION) -> RestoreError:
        return RestoreError(outcome, session.phase, message, object_name=object_name,
                            cause=cause, details=details, code=code)

    # Entry point

    def run(self, options: RestoreOptions) -> RestoreResult:
        """Execute the restore described by options."""
        session = RestoreSession(options=options)

        validation = validate_restore_options(options.to_dict())
        for warning in validation.warnings:
            session.warn(f"{warning.field}: {warning.message}")
        if not validation.valid:
            session.errors.extend(f"{e.field}: {e.message}" for e in validation.errors)
            for message in session.errors:
                logger.error(f"Invalid restore option {message}")
            return self._result(session, RestoreOutcome.INVALID_INPUT)

        try:
            return self._execute(session)
        except RestoreError as e:
            return self._fail(session, e)
        except KubernetesError as e:
            outcome = PHASE_FAILURE_OUTCOMES.get(session.phase, RestoreOutcome.RESTORE_FAILED)
            return self._fail(session, self._error(
                session, outcome, f"{e.message}: {e.stderr}" if e.stderr else e.message, cause=e
            ))
        finally:
            if session.generated_file:
                remove_file(session.generated_file)

    def _execute(self, session: RestoreSession) -> RestoreResult:
        options = session.options

        self._resolve_context(session)
        self._validate(session)

        if options.validate_only:
            self._transition(session, RestorePhase.VALIDATE_ONLY_EXIT)
            logger.info("Validation completed successfully")
            return self._result(session, RestoreOutcome.VALIDATED_ONLY)

        self._compute_names(session)
        self._check_conflict(session)

        session.plan = self.render_plan(session)
        self.echo(session.plan)

        if options.dry_run:
            self._transition(session, RestorePhase.DRY_RUN_EXIT)
            logger.info("Dry-run mode: no changes were made")
            return self._result(session, RestoreOutcome.DRY_RUN)

        if session.already_restored:
            logger.info(
                f"VM {session.names.final_vm_name} already exists in {session.target_namespace}; "
                f"skipping restore and verifying"
            )
            report = self._verify(session)
            self._transition(session, RestorePhase.SUCCEEDED)
            return self._result(session, RestoreOutcome.SUCCESS, verification=report)

        if not options.auto_confirm and not self.confirm("Proceed with restore?"):
            logger.info("Restore cancelled by user")
            return self._result(session, RestoreOutcome.CANCELLED)

        if options.force:
            self._force_cleanup(session)

        self._prepare_transforms(session)
        self._apply_transforms(session)
        self._create_action(session)
        self._monitor(session)
        self._post_actions(session)
        report = self._verify(session)

        self._transition(session, RestorePhase.SUCCEEDED)
        logger.info(f"VM {session.names.final_vm_name} has been restored to namespace {session.target_namespace}")
        return self._result(session, RestoreOutcome.SUCCESS, verification=report)

    # Phases

    def _resolve_context(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.CONTEXT_RESOLVED)
        options = session.options

        logger.info(f"Fetching restore point {options.restore_point}")
        document = self.cluster.get(RESTORE_POINT_CONTENTS, options.restore_point)
        if document is None:
            raise self._error(session, RestoreOutcome.NOT_FOUND,
                              f"Restore point not found: {options.restore_point}",
                              object_name=options.restore_point, code=ErrorCode.NOT_FOUND)

        model = parse(document)
        session.model = model

        session.vm_name = options.vm_name or (model.source_vm_name if model.has_app_name else "")
        if not session.vm_name:
            raise self._error(session, RestoreOutcome.MISSING_IDENTITY,
                              "Could not extract VM name from restore point; pass a VM name explicitly",
                              object_name=options.restore_point)

        session.source_namespace = options.source_namespace or (
            model.source_namespace if model.has_app_namespace else "")
        session.target_namespace = options.target_namespace or session.source_namespace
        if not session.target_namespace:
            raise self._error(session, RestoreOutcome.MISSING_IDENTITY,
                              "Could not determine the VM namespace; pass a namespace explicitly",
                              object_name=options.restore_point)

        session.k10_namespace = self.k10.namespace or self.cluster.detect_k10_namespace(
            self.k10.fallback_namespace)

        logger.info(f"VM: {session.vm_name}")
        logger.info(f"Source Namespace: {session.source_namespace or '<unknown>'}")
        logger.info(f"Target Namespace: {session.target_namespace}")
        logger.info(f"K10 Namespace: {session.k10_namespace}")

    def _validate(self, session: RestoreSession) -> None:
        """Run every precondition check and report all failures together."""
        self._transition(session, RestorePhase.VALIDATED)
        options = session.options
        model = session.model
        errors = MultiError("restore", "validate")

        for crd in REQUIRED_CRDS:
            if not self.cluster.crd_exists(crd):
                errors.add(new_validation_error("restore", "crd", f"Required CRD {crd} is not installed"))

        if not self.cluster.exists(NAMESPACES, session.k10_namespace):
            errors.add(new_validation_error(
                "restore", "k10_namespace", f"K10 namespace {session.k10_namespace} does not exist"))

        if model.disks:
            logger.info(f"Found {len(model.disks)} DataVolume(s) in restore point")
            for disk in model.disks:
                logger.info(f"  - {disk.name} ({disk.requested_size}) - Snapshot: {disk.has_snapshot_artifact}")
        else:
            session.warn("No DataVolumes found in restore point")

        disk_names = set(model.disk_names())
        for disk in options.resize_disks:
            if disk not in disk_names:
                errors.add(new_validation_error(
                    "restore", "resize_disks", f"Disk {disk} is not part of restore point {model.name}"))

        if options.new_storage_class and not self.cluster.exists(STORAGE_CLASSES, options.new_storage_class):
            session.warn(f"StorageClass {options.new_storage_class} not found")

        session.namespace_exists = self.cluster.exists(NAMESPACES, session.target_namespace)
        if session.namespace_exists:
            logger.info(f"Target namespace {session.target_namespace} exists")
            self._report_quotas(session.target_namespace)
        elif options.create_namespace:
            logger.info(f"Target namespace {session.target_namespace} will be created")
        else:
            errors.add(new_validation_error(
                "restore", "target_namespace",
                f"Target namespace {session.target_namespace} does not exist (use --create-namespace)"))

        if not self.cluster.list(VOLUME_SNAPSHOT_CLASSES, label_selector=SNAPSHOT_CLASS_SELECTOR):
            session.warn(f"No VolumeSnapshotClass labelled {SNAPSHOT_CLASS_SELECTOR} found")

        if options.transform_file:
            self._load_custom_transforms(session, errors)

        if errors.has_errors():
            messages = errors.messages()
            for message in messages:
                logger.error(f"Validation: {message}")
            session.errors.extend(messages)
            raise self._error(session, RestoreOutcome.VALIDATION_FAILED,
                              f"Validation failed with {len(messages)} error(s)",
                              object_name=options.restore_point, details="\n".join(messages),
                              code=ErrorCode.VALIDATION)

        logger.info("All validations passed")

    def _report_quotas(self, namespace: str) -> None:
        quotas = self.cluster.list(RESOURCE_QUOTAS, namespace=namespace)
        if not quotas:
            logger.info(f"No resource quotas defined in namespace {namespace}")
        for quota in quotas:
            status = quota.get('status', {})
            logger.info(
                f"ResourceQuota {quota.get('metadata', {}).get('name', '')}: "
                f"hard={status.get('hard', {})} used={status.get('used', {})}"
            )

    def _load_custom_transforms(self, session: RestoreSession, errors: MultiError) -> None:
        path = session.options.transform_file
        try:
            documents = load_yaml_documents(path)
        except (OSError, SecurityError) as e:
            errors.add(new_validation_error("restore", "transform_file", f"Cannot use transform file {path}: {e}"))
            return
        if not documents:
            errors.add(new_validation_error("restore", "transform_file", f"Transform file {path} has no documents"))
            return
        session.custom_documents = documents

    def _compute_names(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.NAMES_COMPUTED)
        session.names = compute_restore_names(session.vm_name, session.options.restore_point)
        logger.info(f"TransformSet name: {session.names.transform_set_name}")
        logger.info(f"RestoreAction name: {session.names.restore_action_name}")

    def _check_conflict(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.CONFLICT_CHECK)
        if not self.cluster.exists(VIRTUAL_MACHINES, session.names.final_vm_name, session.target_namespace):
            return

        if session.options.clone_on_conflict:
            clone_name = resolve_clone_name(
                session.names.final_vm_name,
                session.target_namespace,
                lambda name, namespace: self.cluster.exists(VIRTUAL_MACHINES, name, namespace),
                clock=self.clock,
            )
            logger.info(f"Target VM exists; cloning restore to VM name: {clone_name}")
            session.names = compute_restore_names(clone_name, session.options.restore_point)
            session.cloned = True
        else:
            session.already_restored = True

    def render_plan(self, session: RestoreSession) -> str:
        """Human-readable description of what the restore will do."""
        options = session.options
        names = session.names
        lines = ["RESTORE PLAN", ""]

        if session.already_restored:
            lines.append(f"VM {names.final_vm_name} already exists in {session.target_namespace}.")
            lines.append("Restore will be skipped; the existing VM will be verified.")
            return "\n".join(lines) + "\n"

        lines.append("1. Prepare target environment:")
        if not session.namespace_exists:
            lines.append(f"   - Create namespace: {session.target_namespace}")
        if options.force:
            lines.append(f"   - Remove previous RestoreAction {names.restore_action_name}")
            if not options.transform_file:
                lines.append(f"   - Remove previous TransformSet {names.transform_set_name}")
        if options.transform_file:
            lines.append(f"   - Apply custom transforms from: {options.transform_file}")
        else:
            lines.append(f"   - Generate and apply VM-specific transforms ({names.transform_set_name})")

        lines.extend(["", "2. Restore resources:"])
        for disk in session.model.disks:
            lines.append(f"   - DataVolume: {disk.name} ({disk.requested_size})")
        lines.append(f"   - VirtualMachine: {names.final_vm_name}")
        lines.append(f"   - RestoreAction: {names.restore_action_name} in {session.target_namespace}")

        lines.extend(["", "3. Post-restore actions:"])
        if options.no_start:
            lines.append("   - VM will remain stopped (--no-start)")
        else:
            lines.append("   - VM will start automatically")

        lines.extend(["", "Transform settings:"])
        lines.append(f"   - New MAC addresses: {str(options.regenerate_mac).lower()}")
        if options.new_storage_class:
            lines.append(f"   - Storage class: {options.new_storage_class}")
        for disk, size in options.resize_disks.items():
            lines.append(f"   - Resize disk: {disk}={size}")
        if session.cloned:
            lines.append(f"   - VM renamed to avoid conflict: {names.final_vm_name}")

        return "\n".join(lines) + "\n"

    def _force_cleanup(self, session: RestoreSession) -> None:
        """Delete this restore's own TransformSet and RestoreAction, if present."""
        options = session.options
        names = session.names
        message = (
            "Force cleanup will delete K10 resources if present:\n"
            f"  - TransformSet {names.transform_set_name} (namespace: {session.k10_namespace})\n"
            f"  - RestoreAction {names.restore_action_name} (namespace: {session.target_namespace})\n"
            "Continue?"
        )
        if not options.auto_confirm and not self.confirm(message):
            logger.info("Force cleanup cancelled by user")
            return

        targets = [(RESTORE_ACTIONS, names.restore_action_name, session.target_namespace)]
        if not options.transform_file:
            targets.insert(0, (TRANSFORM_SETS, names.transform_set_name, session.k10_namespace))

        for kind, name, namespace in targets:
            try:
                self.cluster.delete(kind, name, namespace)
                logger.info(f"Deleted {kind} {name} in {namespace} (if present)")
            except KubernetesError as e:
                session.warn(f"Force cleanup could not delete {kind} {name}: {e.message}")

    def _ensure_namespace(self, session: RestoreSession) -> None:
        if session.namespace_exists:
            return
        labels = dict(NAMESPACE_CREATED_BY)
        labels["k10-vm-utils.io/created-at"] = self.clock().strftime("%Y%m%dT%H%M%SZ")
        try:
            self.cluster.create_namespace(session.target_namespace, labels)
        except KubernetesError as e:
            raise self._error(session, RestoreOutcome.NAMESPACE_FAILED,
                              f"Failed to create namespace {session.target_namespace}: {e.message}",
                              object_name=session.target_namespace, cause=e, details=e.stderr or None)
        session.namespace_exists = True
        logger.info(f"Created namespace {session.target_namespace}")

    def _prepare_transforms(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.TRANSFORMS_READY)
        self._ensure_namespace(session)
        options = session.options

        if options.transform_file:
            session.transform_file = options.transform_file
            transform_doc = next(
                (d for d in session.custom_documents if d.get('kind') == 'TransformSet'),
                session.custom_documents[0] if session.custom_documents else {}
            )
            metadata = transform_doc.get('metadata') or {}
            session.transform_name = metadata.get('name') or session.names.transform_set_name
            session.transform_namespace = metadata.get('namespace') or session.k10_namespace
            logger.info(f"Using custom transform file: {options.transform_file} "
                        f"(TransformSet {session.transform_name})")
            return

        model = session.model
        vm_name_override = None
        if session.names.final_vm_name != model.source_vm_name:
            vm_name_override = session.names.final_vm_name

        rules = synthesize(model, options, vm_name_override=vm_name_override,
                           source_namespace=session.source_namespace or None)
        document = build_transform_set(rules, session.names.transform_set_name,
                                       session.k10_namespace, model, self.clock())
        session.generated_file = write_private_file(
            render_transform_set(document),
            prefix=f"{session.names.transform_set_name}-",
            directory=self.timings.temp_dir or None,
        )
        session.transform_file = session.generated_file
        session.transform_name = session.names.transform_set_name
        session.transform_namespace = session.k10_namespace
        logger.info(f"Transforms generated: {session.generated_file} ({len(rules)} rule(s))")

    def _apply_transforms(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.TRANSFORMS_APPLIED)
        logger.info("Applying transforms...")
        try:
            self.cluster.apply_file(session.transform_file)
        except KubernetesError as e:
            raise self._error(session, RestoreOutcome.TRANSFORM_APPLY_FAILED,
                              f"Failed to apply transforms: {e.message}",
                              object_name=session.transform_name, cause=e, details=e.stderr or None)
        logger.info(f"Transforms applied: {session.transform_name}")

    def _create_action(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.ACTION_CREATED)
        names = session.names

        if self.cluster.exists(RESTORE_ACTIONS, names.restore_action_name, session.target_namespace):
            logger.info(f"RestoreAction already exists: {names.restore_action_name}. Skipping creation.")
            return

        document = build_restore_action(
            names, session.target_namespace, session.options.restore_point,
            session.transform_name, session.transform_namespace, self.clock()
        )
        logger.info(f"Creating RestoreAction: {names.restore_action_name}")
        try:
            self.cluster.apply_document(document)
        except KubernetesError as e:
            raise self._error(session, RestoreOutcome.ACTION_CREATE_FAILED,
                              f"Failed to create RestoreAction: {e.message}",
                              object_name=names.restore_action_name, cause=e, details=e.stderr or None)
        logger.info(f"RestoreAction created: {names.restore_action_name}")

    def _monitor(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.MONITORING)
        name = session.names.restore_action_name
        namespace = session.target_namespace
        interval = self.timings.poll_interval
        timeout = session.options.restore_timeout
        if timeout is None:
            timeout = self.timings.restore_timeout

        logger.info(f"Monitoring restore progress (timeout: {timeout}s)...")
        elapsed = 0
        while elapsed < timeout:
            try:
                action = self.cluster.get(RESTORE_ACTIONS, name, namespace) or {}
                state = (action.get('status') or {}).get('state') or "Unknown"
            except KubernetesError as e:
                logger.debug(f"Status read failed, will retry: {e.message}")
                action, state = {}, "Unknown"
            session.last_state = state

            if state == "Complete":
                logger.info("Restore completed successfully")
                return
            if state == "Failed":
                raise self._error(session, RestoreOutcome.RESTORE_FAILED, "Restore failed",
                                  object_name=name, details=self._dump(name, namespace, action))
            if state in ("Running", "Pending"):
                logger.info(f"Restore state: {state} ({elapsed}s elapsed)")
            else:
                logger.info(f"Waiting for restore to start... ({elapsed}s elapsed)")

            self.sleep_fn(interval)
            elapsed += interval

        raise self._error(session, RestoreOutcome.TIMEOUT_EXCEEDED,
                          f"Timeout waiting for restore to complete after {timeout}s "
                          f"(last state: {session.last_state or 'Unknown'})",
                          object_name=name, code=ErrorCode.RESTORE_TIMEOUT)

    def _dump(self, name: str, namespace: str, fallback: Dict[str, Any]) -> str:
        try:
            return self.cluster.get_yaml(RESTORE_ACTIONS, name, namespace)
        except KubernetesError:
            return yaml.safe_dump(fallback, default_flow_style=False, sort_keys=False)

    def _wait_for(self, kind: str, name: str, namespace: str, timeout: int) -> bool:
        """Poll until an object exists or timeout seconds have passed."""
        logger.info(f"Waiting for {kind}/{name} in namespace {namespace}...")
        elapsed = 0
        while True:
            try:
                if self.cluster.exists(kind, name, namespace):
                    logger.info(f"{kind}/{name} exists")
                    return True
            except KubernetesError as e:
                logger.debug(f"Existence check failed, will retry: {e.message}")
            if elapsed >= timeout:
                return False
            self.sleep_fn(self.timings.poll_interval)
            elapsed += self.timings.poll_interval

    def _post_actions(self, session: RestoreSession) -> None:
        self._transition(session, RestorePhase.POST_ACTIONS)
        vm_name = session.names.final_vm_name
        namespace = session.target_namespace

        if not self._wait_for(VIRTUAL_MACHINES, vm_name, namespace, self.timings.vm_wait_timeout):
            session.warn(f"VirtualMachine {vm_name} not created within {self.timings.vm_wait_timeout}s")
            return

        if session.options.no_start:
            self._stop_vm(session, vm_name, namespace)
            return

        logger.info("VM will start automatically")
        self.sleep_fn(self.timings.settle_delay)
        if self._wait_for(VIRTUAL_MACHINE_INSTANCES, vm_name, namespace, self.timings.vmi_wait_timeout):
            logger.info("VirtualMachineInstance is running")
        else:
            session.warn("VirtualMachineInstance not running yet (may take time to boot)")

    def _stop_vm(self, session: RestoreSession, vm_name: str, namespace: str) -> None:
        logger.info("Ensuring VM is stopped...")
        try:
            vm = self.cluster.get(VIRTUAL_MACHINES, vm_name, namespace) or {}
            if 'runStrategy' in (vm.get('spec') or {}):
                patch = [{"op": "replace", "path": "/spec/runStrategy", "value": "Halted"}]
            else:
                patch = [{"op": "replace", "path": "/spec/running", "value": False}]
            self.cluster.patch_json(VIRTUAL_MACHINES, vm_name, namespace, patch)
            logger.info("VM configured to remain stopped")
        except KubernetesError as e:
            session.warn(f"Could not stop VM {vm_name}: {e.message}")

    def _verify(self, session: RestoreSession) -> VerificationReport:
        self._transition(session, RestorePhase.VERIFIED)
        vm_name = session.names.final_vm_name
        namespace = session.target_namespace
        report = VerificationReport(vm_name=vm_name, namespace=namespace)

        vm = self.cluster.get(VIRTUAL_MACHINES, vm_name, namespace)
        if vm is None:
            raise self._error(session, RestoreOutcome.VERIFICATION_FAILED, f"VM not found: {vm_name}",
                              object_name=vm_name)
        report.vm_exists = True
        logger.info(f"VM exists: {vm_name}")

        volumes = (((vm.get('spec') or {}).get('template') or {}).get('spec') or {}).get('volumes') or []
        dv_names = [v['dataVolume']['name'] for v in volumes
                    if isinstance(v, dict) and isinstance(v.get('dataVolume'), dict) and v['dataVolume'].get('name')]

        for dv_name in dv_names:
            status = self._read_status(DATA_VOLUMES, dv_name, namespace)
            phase = status.get('phase') or "Unknown"
            report.datavolume_phases[dv_name] = phase
            if phase == "Succeeded":
                logger.info(f"  DataVolume {dv_name}: {phase}")
            else:
                self._report_warning(session, report, f"DataVolume {dv_name}: {phase}")

            claim = status.get('claimName')
            if not claim:
                continue
            pvc_phase = self._read_status(PVCS, claim, namespace).get('phase') or "Unknown"
            report.pvc_phases[claim] = pvc_phase
            if pvc_phase == "Bound":
                logger.info(f"  PVC {claim}: {pvc_phase}")
            else:
                self._report_warning(session, report, f"PVC {claim}: {pvc_phase}")

        spec = vm.get('spec') or {}
        running = spec.get('running') is True or spec.get('runStrategy') in RUNNING_STRATEGIES
        report.state = "Running" if running else "Stopped"
        logger.info(f"VM State: {report.state}")
        logger.info("Restore verification completed")
        return report

    def _read_status(self, kind: str, name: str, namespace: str) -> Dict[str, Any]:
        """Status block of an object; empty when it is missing or unreadable."""
        try:
            obj = self.cluster.get(kind, name, namespace) or {}
        except KubernetesError as e:
            logger.warning(f"Could not read {kind} {name}: {e.message}")
            return {}
        return obj.get('status') or {}

    @staticmethod
    def _report_warning(session: RestoreSession, report: VerificationReport, message: str) -> None:
        session.warn(message)
        report.warnings.append(message)
