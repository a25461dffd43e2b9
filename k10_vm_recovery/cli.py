#!/usr/bin/env python3
"""
K10 VM Recovery command line.

Sub-commands:
    discover   list VM restore points
    restore    restore a VM from a restore point
    transform  render the TransformSet for a restore point without applying it
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import List, Optional

from . import __version__
from .config.loader import LoggingConfig, RecoveryConfig, load_config
from .config.validator import validate_restore_options
from .discovery.discovery import discover, render_json, render_text
from .errors.errors import KubernetesError, default_formatter
from .integration.cluster_client import NAMESPACES, RESTORE_POINT_CONTENTS, STORAGE_CLASSES, ClusterClient
from .restore.model import parse
from .restore.naming import sanitize
from .restore.options import RestoreOptions, parse_resize_entries
from .restore.orchestrator import RestoreOrchestrator, RestoreOutcome, RestoreResult
from .restore.transforms import build_transform_set, render_transform_set, synthesize, transform_summary

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(logging_config: LoggingConfig, verbose: bool = False) -> None:
    """Configure root logging from the observability section."""
    level = logging.DEBUG if verbose else getattr(logging, logging_config.level.upper(), logging.INFO)
    formatter = JSONFormatter() if logging_config.format == "json" else logging.Formatter(LOG_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if logging_config.file:
        handlers.append(logging.FileHandler(logging_config.file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers)


def create_argument_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI usage."""
    parser = argparse.ArgumentParser(
        prog="k10-vm-recovery",
        description="Discover and restore KubeVirt virtual machines from Kasten K10 restore points"
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', required=True)

    discover_parser = subparsers.add_parser('discover', help='Find VM restore points')
    discover_parser.add_argument('--vm', help='VM name to search for')
    discover_parser.add_argument('--namespace', help='Namespace to search in')
    discover_parser.add_argument('--label', help='Label selector (e.g. "os=rhel,tier=frontend")')
    discover_parser.add_argument('--all', action='store_true',
                                 help='Search all namespaces (the default when no filter is given)')
    discover_parser.add_argument('--no-vm-only', dest='vm_only', action='store_false',
                                 help='Include restore points of non-VM workloads')
    discover_parser.add_argument('--deleted-only', action='store_true',
                                 help='Show only VMs that no longer exist')
    discover_parser.add_argument('--no-disks', dest='show_disks', action='store_false', default=None,
                                 help='Hide disk details')
    discover_parser.add_argument('--output', '-o', choices=['text', 'json'], help='Output format')

    restore_parser = subparsers.add_parser('restore', help='Restore a VM from a restore point')
    restore_parser.add_argument('--restore-point', required=True, help='RestorePointContent name')
    restore_parser.add_argument('--namespace', help='Source namespace (default: from restore point)')
    restore_parser.add_argument('--target-namespace', help='Target namespace (default: source namespace)')
    restore_parser.add_argument('--vm-name', help='VM name (default: from restore point)')
    restore_parser.add_argument('--clone-on-conflict', action='store_true',
                                help='Restore under a new name if the VM already exists')
    restore_parser.add_argument('--new-mac', action='store_true', help='Generate new MAC addresses')
    restore_parser.add_argument('--no-start', action='store_true', help='Leave the VM stopped after restore')
    restore_parser.add_argument('--dry-run', action='store_true', help='Show the restore plan only')
    restore_parser.add_argument('--validate', action='store_true', help='Run validation checks only')
    restore_parser.add_argument('--resize-disk', action='append', default=[], metavar='DISK=SIZE',
                                help='Resize a disk, e.g. rootdisk=50Gi (repeatable)')
    restore_parser.add_argument('--new-storage-class', help='StorageClass for restored disks')
    restore_parser.add_argument('--create-namespace', action='store_true',
                                help='Create the target namespace if missing')
    restore_parser.add_argument('--transform-file', help='Apply this TransformSet file instead of generating one')
    restore_parser.add_argument('--force', action='store_true',
                                help='Delete a previous TransformSet/RestoreAction of this restore first')
    restore_parser.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')
    restore_parser.add_argument('--timeout', type=int, help='Restore timeout in seconds')

    transform_parser = subparsers.add_parser('transform', help='Generate a TransformSet for a restore point')
    transform_parser.add_argument('--restore-point', required=True, help='RestorePointContent name')
    transform_parser.add_argument('--output', '-o', help='Write to this file instead of stdout')
    transform_parser.add_argument('--new-storage-class', help='StorageClass for restored disks')
    transform_parser.add_argument('--new-namespace', help='Namespace to restore into')
    transform_parser.add_argument('--new-mac', action='store_true', help='Generate new MAC addresses')
    transform_parser.add_argument('--vm-name', help='Name for the restored VM')
    transform_parser.add_argument('--transform-name', help='TransformSet name')

    return parser


def cmd_discover(args, config: RecoveryConfig, cluster) -> int:
    results = discover(
        cluster,
        vm_name=args.vm,
        namespace=args.namespace,
        label_selector=args.label,
        vm_only=args.vm_only,
        deleted_only=args.deleted_only,
    )
    if not results:
        return EXIT_SUCCESS

    output = args.output or config.discovery.output_format
    show_disks = config.discovery.show_disks if args.show_disks is None else args.show_disks
    if output == "json":
        print(render_json(results))
    else:
        print(render_text(results, show_disks=show_disks), end="")
    return EXIT_SUCCESS


def _print_restore_result(result: RestoreResult) -> None:
    if result.outcome == RestoreOutcome.SUCCESS:
        vm, namespace = result.vm_name, result.target_namespace
        print(f"✓ VM {vm} restored to namespace {namespace}")
        print(f"  Duration: {result.duration:.2f} seconds")
        for warning in result.warnings:
            print(f"  ! {warning}")
        print("Next steps:")
        print(f"  kubectl get vm {vm} -n {namespace}")
        print(f"  kubectl get vmi {vm} -n {namespace}")
        print(f"  kubectl get events -n {namespace} --sort-by='.lastTimestamp'")
    elif result.outcome == RestoreOutcome.DRY_RUN:
        print("✓ Dry run completed, no changes were made")
    elif result.outcome == RestoreOutcome.VALIDATED_ONLY:
        print("✓ Validation passed")
    elif result.outcome == RestoreOutcome.CANCELLED:
        print("Restore cancelled")
    else:
        print(f"✗ Restore failed ({result.outcome.value}) in phase {result.phase.value}")
        for error in result.errors:
            print(f"  - {error}")


def exit_code_for(outcome: RestoreOutcome) -> int:
    if outcome.successful:
        return EXIT_SUCCESS
    if outcome == RestoreOutcome.INVALID_INPUT:
        return EXIT_INVALID_INPUT
    return EXIT_FAILURE


def cmd_restore(args, config: RecoveryConfig, cluster) -> int:
    try:
        resize_disks = parse_resize_entries(args.resize_disk)
    except ValueError as e:
        print(f"✗ {e}")
        return EXIT_INVALID_INPUT

    options = RestoreOptions(
        restore_point=args.restore_point,
        vm_name=args.vm_name,
        source_namespace=args.namespace,
        target_namespace=args.target_namespace,
        regenerate_mac=args.new_mac,
        new_storage_class=args.new_storage_class,
        resize_disks=resize_disks,
        no_start=args.no_start,
        clone_on_conflict=args.clone_on_conflict,
        force=args.force,
        auto_confirm=args.yes,
        transform_file=args.transform_file,
        create_namespace=args.create_namespace,
        dry_run=args.dry_run,
        validate_only=args.validate,
        restore_timeout=args.timeout,
    )

    orchestrator = RestoreOrchestrator(cluster, timings=config.restore, k10=config.k10, sleep_fn=time.sleep)
    result = orchestrator.run(options)
    _print_restore_result(result)
    return exit_code_for(result.outcome)


def cmd_transform(args, config: RecoveryConfig, cluster) -> int:
    options = RestoreOptions(
        restore_point=args.restore_point,
        vm_name=args.vm_name,
        target_namespace=args.new_namespace,
        regenerate_mac=args.new_mac,
        new_storage_class=args.new_storage_class,
    )
    validation = validate_restore_options(options.to_dict())
    if not validation.valid:
        for error in validation.errors:
            print(f"✗ {error.field}: {error.message}")
        return EXIT_INVALID_INPUT

    document = cluster.get(RESTORE_POINT_CONTENTS, args.restore_point)
    if document is None:
        logger.error(f"Restore point not found: {args.restore_point}")
        return EXIT_FAILURE
    model = parse(document)

    if args.new_storage_class and not cluster.exists(STORAGE_CLASSES, args.new_storage_class):
        logger.warning(f"Storage class {args.new_storage_class} not found, but continuing...")
    if args.new_namespace and not cluster.exists(NAMESPACES, args.new_namespace):
        logger.warning(f"Namespace {args.new_namespace} does not exist, it will need to be created before restore")

    k10_namespace = config.k10.namespace or cluster.detect_k10_namespace(config.k10.fallback_namespace)
    now = datetime.now(timezone.utc)
    transform_name = sanitize(
        args.transform_name or f"vm-restore-transforms-{model.source_vm_name}-{now:%Y%m%d%H%M%S}"
    )
    vm_name_override = args.vm_name if args.vm_name and args.vm_name != model.source_vm_name else None
    namespace_changed = bool(args.new_namespace) and args.new_namespace != model.source_namespace

    logger.info(f"Generating transforms for restore point: {args.restore_point}")
    rules = synthesize(model, options, vm_name_override=vm_name_override)
    transform_set = build_transform_set(rules, transform_name, k10_namespace, model, now)
    text = render_transform_set(transform_set) + "\n" + transform_summary(
        options, vm_name_override, transform_name, k10_namespace, namespace_changed
    )

    if args.output:
        with open(args.output, 'w') as f:
            f.write(text)
        print(f"✓ Transforms written to: {args.output}")
        print(f"  Review the file and apply with: kubectl apply -f {args.output}")
    else:
        print(text, end="")
    return EXIT_SUCCESS


COMMANDS = {
    'discover': cmd_discover,
    'restore': cmd_restore,
    'transform': cmd_transform,
}


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run one sub-command and return its exit code."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"✗ Invalid configuration: {e}")
        return EXIT_INVALID_INPUT

    setup_logging(config.observability.logging, args.verbose)
    for warning in config.load_warnings:
        logger.warning(f"Configuration: {warning}")

    try:
        cluster = ClusterClient.from_config(config.cluster)
        return COMMANDS[args.command](args, config, cluster)
    except KubernetesError as e:
        logger.debug(f"{args.command} failed: {e.to_json()}")
        print(f"✗ {default_formatter.to_user_friendly(e)}")
        return EXIT_FAILURE


def main():
    """Main entry point for CLI usage."""
    sys.exit(run())


if __name__ == '__main__':
    main()
