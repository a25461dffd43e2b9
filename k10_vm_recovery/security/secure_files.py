"""
File handling helpers for generated and user-supplied manifests.

Generated manifests are written to owner-only temporary files. User-supplied
transform files are size-checked and scanned before they are sent to the
cluster.
"""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

MAX_MANIFEST_BYTES = 1024 * 1024
MAX_STRING_LENGTH = 10000


class SecurityError(Exception):
    """Base security exception"""

    def __init__(self, message: str, error_type: str = "security_error"):
        super().__init__(message)
        self.message = message
        self.error_type = error_type


class ValidationError(SecurityError):
    """Input validation error"""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, "validation_error")


class InputValidator:
    """Input validation for manifests read from disk"""

    def __init__(self, max_string_length: int = MAX_STRING_LENGTH):
        self.max_string_length = max_string_length
        self.control_char_pattern = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

    def validate_json(self, data: Any) -> None:
        """Walk a decoded document and reject suspicious strings"""
        if isinstance(data, dict):
            for key, value in data.items():
                self._validate_string(str(key))
                self.validate_json(value)

        elif isinstance(data, list):
            for item in data:
                self.validate_json(item)

        elif isinstance(data, str):
            self._validate_string(data)

    def _validate_string(self, value: str) -> None:
        if self.control_char_pattern.search(value):
            raise ValidationError("Control characters are not allowed in manifests")

        if len(value) > self.max_string_length:
            raise ValidationError("String too long")


def write_private_file(content: str, prefix: str, suffix: str = ".yaml",
                       directory: Optional[str] = None) -> str:
    """Write content to a new temporary file readable only by the current user.

    Returns:
        Path of the written file. The caller owns its removal.
    """
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory or None)
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(content)
    except OSError:
        os.unlink(path)
        raise

    logger.debug(f"Wrote {len(content)} bytes to {path}")
    return path


def remove_file(path: str) -> None:
    """Remove a temporary file, ignoring files that are already gone."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def load_yaml_documents(path: str, validator: Optional[InputValidator] = None) -> List[Dict[str, Any]]:
    """Load every mapping document from a (possibly multi-document) YAML file.

    Raises:
        ValidationError: If the file is too large, unparsable or carries
            rejected content.
    """
    file_path = Path(path)
    size = file_path.stat().st_size
    if size > MAX_MANIFEST_BYTES:
        raise ValidationError(f"{path} is {size} bytes, larger than {MAX_MANIFEST_BYTES}")

    try:
        with open(file_path, 'r') as f:
            documents = [doc for doc in yaml.safe_load_all(f) if isinstance(doc, dict)]
    except yaml.YAMLError as e:
        raise ValidationError(f"Failed to parse {path}: {e}")

    validator = validator or InputValidator()
    for doc in documents:
        validator.validate_json(doc)

    return documents
