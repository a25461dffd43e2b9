"""
Schema validation for configuration and restore options.

Pydantic v2 models check individual sections; ConfigValidator and
RestoreOptionsValidator add cross-field rules and collect everything into a
ValidationResult so all problems are reported together.
"""

import re
from pathlib import Path
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError as PydanticValidationError
from pydantic.config import ConfigDict


DNS_LABEL_RE = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')
DNS_SUBDOMAIN_RE = re.compile(r'^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$')
QUANTITY_RE = re.compile(r'^[0-9]+(\.[0-9]+)?(Ki|Mi|Gi|Ti|Pi|Ei|k|M|G|T|P|E)?$')


def is_dns_label(value: str) -> bool:
    return len(value) <= 63 and bool(DNS_LABEL_RE.match(value))


def is_dns_subdomain(value: str) -> bool:
    return len(value) <= 253 and bool(DNS_SUBDOMAIN_RE.match(value))


class ValidationError:
    """Represents a single validation error or warning."""

    def __init__(self, field: str, value: Any, message: str, level: str = "error"):
        self.field = field
        self.value = value
        self.message = message
        self.level = level  # "error" or "warning"

    def __repr__(self):
        return f"ValidationError(field={self.field}, message={self.message}, level={self.level})"


class ValidationResult:
    """Container for validation results including errors and warnings."""

    def __init__(self):
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []
        self.valid: bool = True
        # section name -> values as coerced by the pydantic model
        self.normalized: Dict[str, Any] = {}

    def add_error(self, field: str, value: Any, message: str):
        """Add a validation error."""
        self.errors.append(ValidationError(field, value, message, "error"))
        self.valid = False

    def add_warning(self, field: str, value: Any, message: str):
        """Add a validation warning."""
        self.warnings.append(ValidationError(field, value, message, "warning"))

    def add_pydantic_errors(self, prefix: str, exc: PydanticValidationError):
        for error in exc.errors():
            loc = ".".join(str(part) for part in error['loc'])
            field = f"{prefix}.{loc}" if loc else prefix
            self.add_error(field, error.get('input'), error['msg'])

    def format_result(self) -> str:
        """Format the validation result for display."""
        output = []

        if self.valid:
            output.append("✅ Validation passed")
        else:
            output.append(f"❌ Validation failed with {len(self.errors)} error(s):\n")
            for error in self.errors:
                output.append(f"  ❌ {error.field}: {error.message}")
                if error.value is not None and error.value != "":
                    output.append(f"     Current value: {error.value}")

        if self.warnings:
            output.append(f"\n⚠️  {len(self.warnings)} warning(s):")
            for warning in self.warnings:
                output.append(f"  - {warning.field}: {warning.message}")

        return "\n".join(output)


# Configuration models

class ValidatedClusterConfig(BaseModel):
    """Cluster access settings with validation."""
    model_config = ConfigDict(validate_default=True, extra='forbid')

    kubectl_binary: str = Field(default="kubectl", min_length=1, description="kubectl executable")
    kubeconfig: str = Field(default="", description="Path to kubeconfig")
    context: str = Field(default="", description="kubeconfig context")
    command_timeout: int = Field(default=60, gt=0, description="Per-command timeout in seconds")


class ValidatedK10Config(BaseModel):
    """K10 settings with validation."""
    model_config = ConfigDict(validate_default=True, extra='forbid')

    namespace: str = Field(default="", description="K10 namespace, empty to auto-detect")
    fallback_namespace: str = Field(default="kasten-io", min_length=1)

    @field_validator('namespace', 'fallback_namespace')
    @classmethod
    def validate_namespace(cls, v):
        if v and not is_dns_label(v):
            raise ValueError(f"Invalid namespace name: {v}")
        return v


class ValidatedRestoreTimings(BaseModel):
    """Poll and wait settings with validation."""
    model_config = ConfigDict(validate_default=True, extra='forbid')

    poll_interval: int = Field(default=10, gt=0)
    restore_timeout: int = Field(default=600, gt=0)
    vm_wait_timeout: int = Field(default=300, ge=0)
    vmi_wait_timeout: int = Field(default=300, ge=0)
    settle_delay: int = Field(default=10, ge=0)
    temp_dir: str = Field(default="")

    @model_validator(mode='after')
    def validate_interval_fits_timeout(self):
        if self.poll_interval > self.restore_timeout:
            raise ValueError("poll_interval must not exceed restore_timeout")
        return self


class ValidatedDiscoveryConfig(BaseModel):
    model_config = ConfigDict(validate_default=True, extra='forbid')

    output_format: str = Field(default="text", pattern="^(text|json)$")
    show_disks: bool = True


class ValidatedLoggingConfig(BaseModel):
    model_config = ConfigDict(validate_default=True, extra='forbid')

    level: str = Field(default="info")
    format: str = Field(default="text", pattern="^(text|json)$")
    file: str = Field(default="")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        if v.lower() not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"Invalid log level: {v}")
        return v


class ConfigValidator:
    """Main configuration validator with cross-field validation."""

    def __init__(self, config_dict: Dict[str, Any]):
        self.config_dict = config_dict
        self.result = ValidationResult()

    def validate(self) -> ValidationResult:
        """Perform configuration validation."""
        self._validate_section('cluster', ValidatedClusterConfig)
        self._validate_section('k10', ValidatedK10Config)
        self._validate_section('restore', ValidatedRestoreTimings)
        self._validate_section('discovery', ValidatedDiscoveryConfig)
        logging_config = self.config_dict.get('observability', {}).get('logging', {})
        try:
            logging_model = ValidatedLoggingConfig(**logging_config)
            self.result.normalized['observability'] = {'logging': logging_model.model_dump()}
        except PydanticValidationError as e:
            self.result.add_pydantic_errors("observability.logging", e)

        self._validate_cross_field_rules()

        return self.result

    def _validate_section(self, name: str, model):
        try:
            self.result.normalized[name] = model(**self.config_dict.get(name, {})).model_dump()
        except PydanticValidationError as e:
            self.result.add_pydantic_errors(name, e)

    def _validate_cross_field_rules(self):
        """Validate cross-field dependencies and rules."""
        restore = self.result.normalized.get('restore', {})
        timeout = restore.get('restore_timeout')
        if isinstance(timeout, int) and 0 < timeout < 60:
            self.result.add_warning(
                "restore.restore_timeout",
                timeout,
                "Restore timeout under a minute will fail most real restores"
            )

        cluster = self.config_dict.get('cluster', {})
        kubeconfig = cluster.get('kubeconfig')
        if kubeconfig and not Path(kubeconfig).exists():
            self.result.add_warning(
                "cluster.kubeconfig",
                kubeconfig,
                "kubeconfig file does not exist; kubectl will fail to connect"
            )


def validate_config(config_dict: Dict[str, Any]) -> ValidationResult:
    """
    Main entry point for configuration validation.

    Args:
        config_dict: Dictionary containing the configuration to validate

    Returns:
        ValidationResult object containing errors and warnings
    """
    validator = ConfigValidator(config_dict)
    return validator.validate()


# Restore option models

class ValidatedRestoreOptions(BaseModel):
    """Restore options with validation."""
    model_config = ConfigDict(validate_default=True, extra='ignore')

    restore_point: str = Field(..., min_length=1)
    vm_name: Optional[str] = None
    source_namespace: Optional[str] = None
    target_namespace: Optional[str] = None
    new_storage_class: Optional[str] = None
    resize_disks: Dict[str, str] = Field(default_factory=dict)
    transform_file: Optional[str] = None
    restore_timeout: Optional[int] = Field(default=None, gt=0)

    @field_validator('restore_point')
    @classmethod
    def validate_restore_point(cls, v):
        if not is_dns_subdomain(v):
            raise ValueError(f"Invalid restore point name: {v}")
        return v

    @field_validator('vm_name', 'source_namespace', 'target_namespace')
    @classmethod
    def validate_label_names(cls, v):
        if v is not None and not is_dns_label(v):
            raise ValueError(f"Not a valid Kubernetes name: {v}")
        return v

    @field_validator('new_storage_class')
    @classmethod
    def validate_storage_class(cls, v):
        if v is not None and not is_dns_subdomain(v):
            raise ValueError(f"Not a valid StorageClass name: {v}")
        return v

    @field_validator('resize_disks')
    @classmethod
    def validate_resize_disks(cls, v):
        for disk, size in v.items():
            if not is_dns_subdomain(disk):
                raise ValueError(f"Invalid disk name in resize entry: {disk}")
            if not QUANTITY_RE.match(size):
                raise ValueError(f"Invalid size for disk {disk}: {size} (expected e.g. 50Gi)")
        return v

    @field_validator('transform_file')
    @classmethod
    def validate_transform_file(cls, v):
        if v is not None and not Path(v).is_file():
            raise ValueError(f"Transform file does not exist: {v}")
        return v


class RestoreOptionsValidator:
    """Validates restore options before any cluster call is made."""

    def __init__(self, options_dict: Dict[str, Any]):
        self.options_dict = options_dict
        self.result = ValidationResult()

    def validate(self) -> ValidationResult:
        try:
            ValidatedRestoreOptions(**self.options_dict)
        except PydanticValidationError as e:
            self.result.add_pydantic_errors("options", e)

        self._validate_cross_field_rules()
        return self.result

    def _validate_cross_field_rules(self):
        opts = self.options_dict
        if opts.get('transform_file'):
            ignored = []
            if opts.get('new_storage_class'):
                ignored.append('new_storage_class')
            if opts.get('regenerate_mac'):
                ignored.append('regenerate_mac')
            if opts.get('resize_disks'):
                ignored.append('resize_disks')
            for name in ignored:
                self.result.add_warning(
                    f"options.{name}",
                    opts.get(name),
                    "Ignored because a custom transform file was supplied"
                )

        if opts.get('dry_run') and opts.get('force'):
            self.result.add_warning(
                "options.force",
                True,
                "Forced cleanup is skipped in dry-run mode"
            )


def validate_restore_options(options_dict: Dict[str, Any]) -> ValidationResult:
    """Validate a dictionary of restore options."""
    return RestoreOptionsValidator(options_dict).validate()
