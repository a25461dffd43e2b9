"""
Cluster access through kubectl.

ClusterClient exposes the handful of operations the restore workflow and
discovery need (get, list, apply, patch, delete) as typed methods. Every
kubectl failure surfaces as a KubernetesError; lookups of missing objects
return None instead of raising.
"""

import json
import logging
import re
import subprocess
from typing import Any, Dict, List, Optional

import yaml

from ..errors.errors import ErrorCode, KubernetesError

logger = logging.getLogger(__name__)

# Resource names as kubectl understands them
RESTORE_POINT_CONTENTS = "restorepointcontents.apps.kio.kasten.io"
RESTORE_ACTIONS = "restoreactions.actions.kio.kasten.io"
TRANSFORM_SETS = "transformsets.config.kio.kasten.io"
VIRTUAL_MACHINES = "virtualmachines.kubevirt.io"
VIRTUAL_MACHINE_INSTANCES = "virtualmachineinstances.kubevirt.io"
DATA_VOLUMES = "datavolumes.cdi.kubevirt.io"
PVCS = "persistentvolumeclaims"
NAMESPACES = "namespaces"
STORAGE_CLASSES = "storageclasses"
VOLUME_SNAPSHOT_CLASSES = "volumesnapshotclasses"
RESOURCE_QUOTAS = "resourcequotas"
CRDS = "customresourcedefinitions"

K10_NAMESPACE_PATTERN = re.compile(r"kasten|k10")
NOT_FOUND_PATTERN = re.compile(r"NotFound|not found", re.IGNORECASE)


class ClusterClient:
    """Thin typed wrapper around the kubectl binary."""

    def __init__(self, kubectl_binary: str = "kubectl", kubeconfig: str = "",
                 context: str = "", timeout: int = 60):
        self.kubectl_binary = kubectl_binary
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    @classmethod
    def from_config(cls, cluster_config) -> 'ClusterClient':
        """Build a client from a ClusterConfig section."""
        return cls(
            kubectl_binary=cluster_config.kubectl_binary,
            kubeconfig=cluster_config.kubeconfig,
            context=cluster_config.context,
            timeout=cluster_config.command_timeout,
        )

    def _base_command(self) -> List[str]:
        cmd = [self.kubectl_binary]
        if self.kubeconfig:
            cmd.extend(['--kubeconfig', self.kubeconfig])
        if self.context:
            cmd.extend(['--context', self.context])
        return cmd

    def _run(self, args: List[str], operation: str, input_text: Optional[str] = None) -> str:
        """Run kubectl and return its stdout.

        Raises:
            KubernetesError: kubectl is missing, timed out or exited non-zero.
                A missing object is reported with ErrorCode.NOT_FOUND.
        """
        cmd = self._base_command() + args
        logger.debug(f"Executing command: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True
            )
        except FileNotFoundError as e:
            raise KubernetesError(
                operation, f"{self.kubectl_binary} executable not found", command=cmd, cause=e
            )
        except subprocess.TimeoutExpired as e:
            raise KubernetesError(
                operation, f"kubectl {operation} timed out after {self.timeout} seconds",
                command=cmd, code=ErrorCode.COMMAND_TIMEOUT, cause=e
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr or ""
            code = ErrorCode.NOT_FOUND if NOT_FOUND_PATTERN.search(stderr) else ErrorCode.KUBERNETES_API
            raise KubernetesError(
                operation, f"kubectl {operation} failed with exit code {e.returncode}",
                command=cmd, returncode=e.returncode, stderr=stderr, code=code
            )

        if result.stderr:
            logger.debug(f"kubectl stderr: {result.stderr.strip()}")
        return result.stdout

    @staticmethod
    def _scope(namespace: Optional[str], all_namespaces: bool = False) -> List[str]:
        if all_namespaces:
            return ['--all-namespaces']
        if namespace:
            return ['-n', namespace]
        return []

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Fetch one object as a dict, or None if it does not exist."""
        try:
            output = self._run(['get', kind, name] + self._scope(namespace) + ['-o', 'json'], 'get')
        except KubernetesError as e:
            if e.code == ErrorCode.NOT_FOUND:
                return None
            raise
        return self._decode(output, 'get')

    def get_yaml(self, kind: str, name: str, namespace: Optional[str] = None) -> str:
        """Fetch one object rendered as YAML, for diagnostics."""
        return self._run(['get', kind, name] + self._scope(namespace) + ['-o', 'yaml'], 'get')

    def list(self, kind: str, namespace: Optional[str] = None, label_selector: Optional[str] = None,
             all_namespaces: bool = False) -> List[Dict[str, Any]]:
        """List objects of a kind. An unknown kind yields an empty list."""
        args = ['get', kind] + self._scope(namespace, all_namespaces)
        if label_selector:
            args.extend(['-l', label_selector])
        args.extend(['-o', 'json'])

        try:
            output = self._run(args, 'list')
        except KubernetesError as e:
            if e.code == ErrorCode.NOT_FOUND:
                return []
            raise
        return self._decode(output, 'list').get('items') or []

    def exists(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        return self.get(kind, name, namespace) is not None

    def crd_exists(self, crd_name: str) -> bool:
        return self.exists(CRDS, crd_name)

    def apply_document(self, document: Dict[str, Any]) -> None:
        """Apply an in-memory manifest through stdin."""
        manifest = yaml.safe_dump(document, default_flow_style=False, sort_keys=False)
        self._run(['apply', '-f', '-'], 'apply', input_text=manifest)

    def apply_file(self, path: str) -> None:
        self._run(['apply', '-f', path], 'apply')

    def create_namespace(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        self.apply_document({
            'apiVersion': 'v1',
            'kind': 'Namespace',
            'metadata': {'name': name, 'labels': dict(labels or {})},
        })

    def patch_json(self, kind: str, name: str, namespace: Optional[str],
                   operations: List[Dict[str, Any]]) -> None:
        """Apply RFC 6902 operations to an object."""
        args = ['patch', kind, name] + self._scope(namespace)
        args.extend(['--type=json', '-p', json.dumps(operations)])
        self._run(args, 'patch')

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        """Delete an object; deleting a missing object is not an error."""
        self._run(['delete', kind, name] + self._scope(namespace) + ['--ignore-not-found'], 'delete')

    def detect_k10_namespace(self, fallback: str = "kasten-io") -> str:
        """Return the first namespace that looks like a K10 install, else fallback."""
        for ns in self.list(NAMESPACES):
            name = ns.get('metadata', {}).get('name', '')
            if K10_NAMESPACE_PATTERN.search(name):
                return name
        return fallback

    @staticmethod
    def _decode(output: str, operation: str) -> Dict[str, Any]:
        try:
            data = json.loads(output) if output.strip() else {}
        except json.JSONDecodeError as e:
            raise KubernetesError(
                operation, "kubectl returned invalid JSON", code=ErrorCode.DATA_FORMAT, cause=e
            )
        return data if isinstance(data, dict) else {}
