"""
Configuration loader for the K10 VM recovery utility.

Settings come from YAML files, merged in order, then environment variable
overrides. Command-line flags are applied on top by the CLI.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field


@dataclass
class ClusterConfig:
    """How kubectl reaches the cluster."""
    kubectl_binary: str = "kubectl"
    kubeconfig: str = ""
    context: str = ""
    command_timeout: int = 60


@dataclass
class K10Config:
    """Kasten K10 installation settings."""
    namespace: str = ""
    fallback_namespace: str = "kasten-io"


@dataclass
class RestoreTimingsConfig:
    """Polling and waiting behaviour of the restore workflow."""
    poll_interval: int = 10
    restore_timeout: int = 600
    vm_wait_timeout: int = 300
    vmi_wait_timeout: int = 300
    settle_delay: int = 10
    temp_dir: str = ""


@dataclass
class DiscoveryConfig:
    """Discovery defaults."""
    output_format: str = "text"
    show_disks: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "info"
    format: str = "text"
    file: str = ""


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass
class RecoveryConfig:
    """Complete configuration."""
    schema_version: str = "1.0.0"
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    k10: K10Config = field(default_factory=K10Config)
    restore: RestoreTimingsConfig = field(default_factory=RestoreTimingsConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    load_warnings: List[str] = field(default_factory=list, compare=False)


class ConfigLoader:
    """Configuration loader for the recovery utility."""

    def __init__(self, config_paths: Optional[List[str]] = None):
        """Initialize configuration loader.

        Args:
            config_paths: List of configuration file paths to load
        """
        self.config_paths = config_paths or self._default_config_paths()
        self.load_warnings: List[str] = []

    @staticmethod
    def _default_config_paths() -> List[str]:
        """Get default configuration file paths."""
        paths = [
            "./k10-vm-recovery.yaml",
            "./config/k10-vm-recovery.yaml",
            "/etc/k10-vm-recovery/config.yaml",
        ]

        home = Path.home()
        paths.append(str(home / ".k10-vm-recovery" / "config.yaml"))

        return paths

    def load(self) -> RecoveryConfig:
        """Load, merge and validate configuration.

        Returns:
            RecoveryConfig: Loaded and validated configuration

        Raises:
            ValueError: If the merged configuration is invalid
        """
        config = self.load_without_validation()
        self._validate(config)
        config.load_warnings = list(self.load_warnings)
        return config

    def load_without_validation(self) -> RecoveryConfig:
        """Load configuration without validation (for testing or special cases)."""
        config = RecoveryConfig()

        for path in self.config_paths:
            config = self._load_file(path, config)

        config = self._apply_environment_overrides(config)
        config = self._expand_environment_variables(config)

        return config

    def _load_file(self, path: str, config: RecoveryConfig) -> RecoveryConfig:
        """Load configuration from a YAML file.

        Missing files are skipped. Unreadable or malformed files are recorded
        in ``load_warnings`` and skipped.
        """
        path_obj = Path(path)
        if not path_obj.exists():
            return config

        try:
            with open(path_obj, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            self.load_warnings.append(f"Failed to load config from {path}: {e}")
            return config

        if isinstance(data, dict):
            config = self._merge_configs(config, data)
        elif data is not None:
            self.load_warnings.append(f"Ignoring {path}: top-level YAML value is not a mapping")

        return config

    def _merge_configs(self, config: RecoveryConfig, data: Dict[str, Any]) -> RecoveryConfig:
        """Merge configuration data into existing config."""
        config.schema_version = str(data.get('schema_version', config.schema_version))

        if isinstance(data.get('cluster'), dict):
            cluster = data['cluster']
            config.cluster.kubectl_binary = cluster.get('kubectl_binary', config.cluster.kubectl_binary)
            config.cluster.kubeconfig = cluster.get('kubeconfig', config.cluster.kubeconfig)
            config.cluster.context = cluster.get('context', config.cluster.context)
            config.cluster.command_timeout = cluster.get('command_timeout', config.cluster.command_timeout)

        if isinstance(data.get('k10'), dict):
            k10 = data['k10']
            config.k10.namespace = k10.get('namespace', config.k10.namespace)
            config.k10.fallback_namespace = k10.get('fallback_namespace', config.k10.fallback_namespace)

        if isinstance(data.get('restore'), dict):
            restore = data['restore']
            config.restore.poll_interval = restore.get('poll_interval', config.restore.poll_interval)
            config.restore.restore_timeout = restore.get('restore_timeout', config.restore.restore_timeout)
            config.restore.vm_wait_timeout = restore.get('vm_wait_timeout', config.restore.vm_wait_timeout)
            config.restore.vmi_wait_timeout = restore.get('vmi_wait_timeout', config.restore.vmi_wait_timeout)
            config.restore.settle_delay = restore.get('settle_delay', config.restore.settle_delay)
            config.restore.temp_dir = restore.get('temp_dir', config.restore.temp_dir)

        if isinstance(data.get('discovery'), dict):
            discovery = data['discovery']
            config.discovery.output_format = discovery.get('output_format', config.discovery.output_format)
            config.discovery.show_disks = discovery.get('show_disks', config.discovery.show_disks)

        if isinstance(data.get('observability'), dict):
            obs_data = data['observability']
            if isinstance(obs_data.get('logging'), dict):
                logging = obs_data['logging']
                config.observability.logging.level = logging.get('level', config.observability.logging.level)
                config.observability.logging.format = logging.get('format', config.observability.logging.format)
                config.observability.logging.file = logging.get('file', config.observability.logging.file)

        return config

    def _apply_environment_overrides(self, config: RecoveryConfig) -> RecoveryConfig:
        """Apply environment variable overrides."""
        config.cluster.kubectl_binary = os.getenv('K10_VM_KUBECTL', config.cluster.kubectl_binary)
        config.cluster.kubeconfig = os.getenv('KUBECONFIG', config.cluster.kubeconfig)
        config.cluster.context = os.getenv('K10_VM_CONTEXT', config.cluster.context)

        config.k10.namespace = os.getenv('K10_NAMESPACE', config.k10.namespace)

        poll_interval = os.getenv('K10_VM_POLL_INTERVAL')
        if poll_interval:
            try:
                config.restore.poll_interval = int(poll_interval)
            except ValueError:
                self.load_warnings.append(f"Ignoring non-integer K10_VM_POLL_INTERVAL={poll_interval!r}")

        restore_timeout = os.getenv('K10_VM_RESTORE_TIMEOUT')
        if restore_timeout:
            try:
                config.restore.restore_timeout = int(restore_timeout)
            except ValueError:
                self.load_warnings.append(f"Ignoring non-integer K10_VM_RESTORE_TIMEOUT={restore_timeout!r}")

        config.observability.logging.level = os.getenv('LOG_LEVEL', config.observability.logging.level)
        config.observability.logging.format = os.getenv('LOG_FORMAT', config.observability.logging.format)

        return config

    def _expand_environment_variables(self, config: RecoveryConfig) -> RecoveryConfig:
        """Expand environment variables and ``~`` in path-like fields."""
        config.cluster.kubectl_binary = os.path.expandvars(config.cluster.kubectl_binary)
        if config.cluster.kubeconfig:
            config.cluster.kubeconfig = os.path.expanduser(os.path.expandvars(config.cluster.kubeconfig))
        if config.restore.temp_dir:
            config.restore.temp_dir = os.path.expanduser(os.path.expandvars(config.restore.temp_dir))
        if config.observability.logging.file:
            config.observability.logging.file = os.path.expanduser(
                os.path.expandvars(config.observability.logging.file)
            )

        return config

    def _validate(self, config: RecoveryConfig) -> None:
        """Validate configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        from .validator import validate_config

        validation_result = validate_config(self.to_dict(config))

        if not validation_result.valid:
            raise ValueError(f"Configuration validation failed:\n{validation_result.format_result()}")

        for warning in validation_result.warnings:
            self.load_warnings.append(f"{warning.field}: {warning.message}")

        self._apply_validated(config, validation_result.normalized)

    @staticmethod
    def _apply_validated(config: RecoveryConfig, sections: Dict[str, Any]) -> None:
        """Replace raw YAML values with the coerced values pydantic accepted."""
        config.cluster = ClusterConfig(**sections['cluster'])
        config.k10 = K10Config(**sections['k10'])
        config.restore = RestoreTimingsConfig(**sections['restore'])
        config.discovery = DiscoveryConfig(**sections['discovery'])
        config.observability.logging = LoggingConfig(**sections['observability']['logging'])

    @staticmethod
    def to_dict(config: RecoveryConfig) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'schema_version': config.schema_version,
            'cluster': {
                'kubectl_binary': config.cluster.kubectl_binary,
                'kubeconfig': config.cluster.kubeconfig,
                'context': config.cluster.context,
                'command_timeout': config.cluster.command_timeout,
            },
            'k10': {
                'namespace': config.k10.namespace,
                'fallback_namespace': config.k10.fallback_namespace,
            },
            'restore': {
                'poll_interval': config.restore.poll_interval,
                'restore_timeout': config.restore.restore_timeout,
                'vm_wait_timeout': config.restore.vm_wait_timeout,
                'vmi_wait_timeout': config.restore.vmi_wait_timeout,
                'settle_delay': config.restore.settle_delay,
                'temp_dir': config.restore.temp_dir,
            },
            'discovery': {
                'output_format': config.discovery.output_format,
                'show_disks': config.discovery.show_disks,
            },
            'observability': {
                'logging': {
                    'level': config.observability.logging.level,
                    'format': config.observability.logging.format,
                    'file': config.observability.logging.file,
                }
            }
        }


def load_config(config_path: Optional[str] = None) -> RecoveryConfig:
    """Load configuration from an explicit file or the default locations.

    Problems that did not stop loading are returned in ``load_warnings``.
    """
    loader = ConfigLoader([config_path] if config_path else None)
    return loader.load()
