"""
Tests for the configuration loader.
"""

import os
import tempfile
from unittest.mock import patch

import pytest
import yaml

from .loader import ConfigLoader, load_config


def _write_config(data) -> str:
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        yaml.safe_dump(data, f)
        return f.name


class TestConfigLoader:
    """Test cases for ConfigLoader class."""

    def test_defaults_without_files(self):
        """Missing files leave every default in place."""
        with patch.dict(os.environ, {}, clear=True):
            config = ConfigLoader(['/nonexistent/k10-vm-recovery.yaml']).load()

        assert config.cluster.kubectl_binary == 'kubectl'
        assert config.k10.namespace == ''
        assert config.k10.fallback_namespace == 'kasten-io'
        assert config.restore.poll_interval == 10
        assert config.restore.restore_timeout == 600
        assert config.restore.vm_wait_timeout == 300
        assert config.restore.vmi_wait_timeout == 300
        assert config.observability.logging.format == 'text'

    def test_load_basic_config(self):
        """Test loading a basic configuration from file."""
        config_path = _write_config({
            'schema_version': '1.0.0',
            'cluster': {'kubectl_binary': 'oc', 'context': 'prod', 'command_timeout': 30},
            'k10': {'namespace': 'kasten-io'},
            'restore': {'poll_interval': 5, 'restore_timeout': 1200},
            'discovery': {'output_format': 'json'},
            'observability': {'logging': {'level': 'debug', 'format': 'json'}},
        })

        try:
            with patch.dict(os.environ, {}, clear=True):
                config = ConfigLoader([config_path]).load()

            assert config.cluster.kubectl_binary == 'oc'
            assert config.cluster.context == 'prod'
            assert config.cluster.command_timeout == 30
            assert config.k10.namespace == 'kasten-io'
            assert config.restore.poll_interval == 5
            assert config.restore.restore_timeout == 1200
            assert config.discovery.output_format == 'json'
            assert config.observability.logging.level == 'debug'
        finally:
            os.unlink(config_path)

    def test_later_files_override_earlier(self):
        first = _write_config({'restore': {'poll_interval': 5}})
        second = _write_config({'restore': {'poll_interval': 15}})

        try:
            with patch.dict(os.environ, {}, clear=True):
                config = ConfigLoader([first, second]).load()
            assert config.restore.poll_interval == 15
        finally:
            os.unlink(first)
            os.unlink(second)

    def test_environment_overrides(self):
        """Environment variables override file values."""
        config_path = _write_config({'k10': {'namespace': 'from-file'}, 'restore': {'restore_timeout': 900}})

        env = {
            'K10_NAMESPACE': 'k10',
            'K10_VM_RESTORE_TIMEOUT': '1800',
            'K10_VM_KUBECTL': 'oc',
            'LOG_LEVEL': 'warning',
        }
        try:
            with patch.dict(os.environ, env, clear=True):
                config = ConfigLoader([config_path]).load()

            assert config.k10.namespace == 'k10'
            assert config.restore.restore_timeout == 1800
            assert config.cluster.kubectl_binary == 'oc'
            assert config.observability.logging.level == 'warning'
        finally:
            os.unlink(config_path)

    def test_invalid_integer_override_is_ignored_with_warning(self):
        with patch.dict(os.environ, {'K10_VM_POLL_INTERVAL': 'soon'}, clear=True):
            loader = ConfigLoader(['/nonexistent.yaml'])
            config = loader.load()

        assert config.restore.poll_interval == 10
        assert any('K10_VM_POLL_INTERVAL' in w for w in loader.load_warnings)

    def test_validation_errors(self):
        """Invalid values fail load() but not load_without_validation()."""
        test_cases = [
            {'restore': {'poll_interval': 0}},
            {'restore': {'poll_interval': 700, 'restore_timeout': 600}},
            {'k10': {'namespace': 'Not_A_Namespace'}},
            {'discovery': {'output_format': 'xml'}},
            {'observability': {'logging': {'level': 'loud'}}},
        ]

        for data in test_cases:
            config_path = _write_config(data)
            try:
                with patch.dict(os.environ, {}, clear=True):
                    loader = ConfigLoader([config_path])
                    loader.load_without_validation()
                    with pytest.raises(ValueError):
                        loader.load()
            finally:
                os.unlink(config_path)

    def test_malformed_yaml_is_skipped(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("restore: [unclosed\n")
            config_path = f.name

        try:
            with patch.dict(os.environ, {}, clear=True):
                loader = ConfigLoader([config_path])
                config = loader.load()
            assert config.restore.poll_interval == 10
            assert any(config_path in w for w in loader.load_warnings)
        finally:
            os.unlink(config_path)

    def test_quoted_numbers_are_coerced(self):
        """Values pydantic coerces are stored in their coerced form."""
        config_path = _write_config({
            'cluster': {'command_timeout': '45'},
            'restore': {'poll_interval': '10', 'restore_timeout': '900', 'settle_delay': '0'},
        })

        try:
            with patch.dict(os.environ, {}, clear=True):
                config = ConfigLoader([config_path]).load()

            assert config.cluster.command_timeout == 45
            assert config.restore.poll_interval == 10
            assert config.restore.restore_timeout == 900
            assert config.restore.settle_delay == 0
            assert isinstance(config.restore.poll_interval, int)
        finally:
            os.unlink(config_path)

    def test_warnings_travel_with_config(self):
        with patch.dict(os.environ, {'K10_VM_POLL_INTERVAL': 'soon'}, clear=True):
            config = ConfigLoader(['/nonexistent.yaml']).load()

        assert len(config.load_warnings) == 1
        assert 'K10_VM_POLL_INTERVAL' in config.load_warnings[0]

    def test_default_config_paths(self):
        paths = ConfigLoader().config_paths

        for expected in ['./k10-vm-recovery.yaml', './config/k10-vm-recovery.yaml',
                         '/etc/k10-vm-recovery/config.yaml']:
            assert expected in paths

    def test_environment_variable_expansion(self):
        config_path = _write_config({'restore': {'temp_dir': '${RESTORE_TMP}/work'}})

        try:
            with patch.dict(os.environ, {'RESTORE_TMP': '/var/tmp'}, clear=True):
                config = ConfigLoader([config_path]).load()
            assert config.restore.temp_dir == '/var/tmp/work'
        finally:
            os.unlink(config_path)

    def test_load_config_helper(self):
        config_path = _write_config({'k10': {'namespace': 'k10'}})
        try:
            with patch.dict(os.environ, {}, clear=True):
                assert load_config(config_path).k10.namespace == 'k10'
        finally:
            os.unlink(config_path)

    def test_load_config_reports_malformed_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("restore: [unclosed\n")
            config_path = f.name

        try:
            with patch.dict(os.environ, {}, clear=True):
                config = load_config(config_path)
            assert config.restore.poll_interval == 10
            assert any(w.startswith(f"Failed to load config from {config_path}") for w in config.load_warnings)
        finally:
            os.unlink(config_path)
