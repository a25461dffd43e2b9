"""
Kubernetes-safe, deterministic names for restore artifacts.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 63
RESTORE_POINT_PREFIX_LENGTH = 20
CLONE_SUFFIX = "-clone"
MAX_CLONE_INDEX = 99

_INVALID_CHARS = re.compile(r"[^a-z0-9-]")

ExistsFn = Callable[[str, str], bool]


@dataclass(frozen=True)
class ResolvedNames:
    """Names derived once per restore from the final VM name."""
    transform_set_name: str
    restore_action_name: str
    final_vm_name: str


def sanitize(raw_name: str) -> str:
    """Lowercase, replace anything outside [a-z0-9-] with '-', cap at 63 chars.

    Trailing dashes are removed so the result can be sanitized again unchanged.
    """
    name = _INVALID_CHARS.sub("-", (raw_name or "").lower())
    return name[:MAX_NAME_LENGTH].rstrip("-")


def _with_suffix(base_name: str, suffix: str) -> str:
    head = sanitize(base_name)[:MAX_NAME_LENGTH - len(suffix)].rstrip("-")
    return sanitize(head + suffix)


def resolve_clone_name(base_name: str, namespace: str, exists_fn: ExistsFn,
                       clock: Optional[Callable[[], datetime]] = None) -> str:
    """Find the first free clone name for base_name in namespace.

    Tries <base>-clone, then <base>-clone-2 .. <base>-clone-99. Every
    candidate is checked against the cluster as it is tried. When all are
    taken a timestamp suffix is used, which is not deterministic.
    """
    candidate = _with_suffix(base_name, CLONE_SUFFIX)
    if not exists_fn(candidate, namespace):
        return candidate

    for index in range(2, MAX_CLONE_INDEX + 1):
        candidate = _with_suffix(base_name, f"{CLONE_SUFFIX}-{index}")
        if not exists_fn(candidate, namespace):
            return candidate

    now = (clock or (lambda: datetime.now(timezone.utc)))()
    candidate = _with_suffix(base_name, f"{CLONE_SUFFIX}-{now:%Y%m%d%H%M%S}")
    logger.warning(
        f"All clone names {CLONE_SUFFIX} to {CLONE_SUFFIX}-{MAX_CLONE_INDEX} are taken for "
        f"{base_name} in {namespace}; using {candidate}"
    )
    return candidate


def compute_restore_names(vm_name: str, restore_point_name: str) -> ResolvedNames:
    """Derive TransformSet and RestoreAction names for a VM and restore point."""
    rp_short = sanitize(restore_point_name)[:RESTORE_POINT_PREFIX_LENGTH]
    return ResolvedNames(
        transform_set_name=sanitize(f"vm-restore-transforms-{vm_name}-{rp_short}"),
        restore_action_name=sanitize(f"restore-{vm_name}-{rp_short}"),
        final_vm_name=vm_name,
    )
