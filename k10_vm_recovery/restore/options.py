"""
User intent for a single restore.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Optional


@dataclass(frozen=True)
class RestoreOptions:
    """Restore options as given on the command line. Immutable once built."""
    restore_point: str
    vm_name: Optional[str] = None
    source_namespace: Optional[str] = None
    target_namespace: Optional[str] = None
    regenerate_mac: bool = False
    new_storage_class: Optional[str] = None
    resize_disks: Dict[str, str] = field(default_factory=dict)
    no_start: bool = False
    clone_on_conflict: bool = False
    force: bool = False
    auto_confirm: bool = False
    transform_file: Optional[str] = None
    create_namespace: bool = False
    dry_run: bool = False
    validate_only: bool = False
    restore_timeout: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_resize_entries(entries: Optional[Iterable[str]]) -> Dict[str, str]:
    """Turn ``name=size`` strings into a mapping, later entries winning.

    Raises:
        ValueError: An entry has no '=' or an empty side.
    """
    resize = {}
    for entry in entries or []:
        name, sep, size = entry.partition("=")
        name, size = name.strip(), size.strip()
        if not sep or not name or not size:
            raise ValueError(f"Invalid resize entry '{entry}', expected <disk>=<size> (e.g. rootdisk=50Gi)")
        resize[name] = size
    return resize
