"""
Error types shared by the cluster client and the restore orchestrator.

A kubectl failure surfaces as KubernetesError, a fatal restore failure as
RestoreError. Both carry an ErrorCode, the component and operation they came
from, and a context dict that ends up in logs and in ``to_dict()``.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, List


class ErrorCode(Enum):
    """Error classification codes."""

    KUBERNETES_API = "KUBERNETES_API"
    COMMAND_TIMEOUT = "COMMAND_TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION = "PERMISSION"

    CONFIGURATION = "CONFIGURATION"
    VALIDATION = "VALIDATION"

    RESTORE_OPERATION = "RESTORE_OPERATION"
    RESTORE_TIMEOUT = "RESTORE_TIMEOUT"

    DATA_FORMAT = "DATA_FORMAT"
    UNKNOWN = "UNKNOWN"


class Severity(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_BY_CODE = {
    ErrorCode.KUBERNETES_API: Severity.HIGH,
    ErrorCode.RESTORE_OPERATION: Severity.HIGH,
    ErrorCode.RESTORE_TIMEOUT: Severity.HIGH,
    ErrorCode.PERMISSION: Severity.HIGH,
    ErrorCode.VALIDATION: Severity.LOW,
    ErrorCode.DATA_FORMAT: Severity.LOW,
}

# kubectl hiccups an operator can simply re-run; nothing here retries on its own
RETRYABLE_CODES = frozenset({ErrorCode.COMMAND_TIMEOUT, ErrorCode.KUBERNETES_API})


class StandardError(Exception):
    """Base error with code, origin and diagnostic context."""

    def __init__(
        self,
        code: ErrorCode,
        component: str,
        operation: str,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.component = component
        self.operation = operation
        self.message = message
        self.cause = cause
        self.context = dict(context or {})
        self.timestamp = datetime.now(timezone.utc)
        self.severity = SEVERITY_BY_CODE.get(code, Severity.MEDIUM)
        self.retryable = code in RETRYABLE_CODES

        text = f"[{code.value}] {message}"
        if cause is not None:
            text = f"{text}: {cause}"
        super().__init__(text)

    def with_context(self, key: str, value: Any) -> 'StandardError':
        self.context[key] = value
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code.value,
            'severity': self.severity.value,
            'component': self.component,
            'operation': self.operation,
            'message': self.message,
            'retryable': self.retryable,
            'context': self.context,
            'cause': str(self.cause) if self.cause else None,
            'timestamp': self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)


class KubernetesError(StandardError):
    """A kubectl invocation failed."""

    def __init__(
        self,
        operation: str,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
        code: ErrorCode = ErrorCode.KUBERNETES_API,
        cause: Optional[Exception] = None
    ):
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr.strip()
        context = {'command': ' '.join(self.command), 'returncode': returncode}
        if self.stderr:
            context['stderr'] = self.stderr
        super().__init__(code, "kubernetes", operation, message, cause, context)


class RestoreError(StandardError):
    """Fatal restore failure bound to an outcome and the phase it happened in."""

    def __init__(
        self,
        outcome,
        phase,
        message: str,
        object_name: str = "",
        cause: Optional[Exception] = None,
        details: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESTORE_OPERATION
    ):
        self.outcome = outcome
        self.phase = phase
        self.object_name = object_name
        self.details = details
        context = {
            'outcome': getattr(outcome, 'value', outcome),
            'phase': getattr(phase, 'value', phase),
        }
        if object_name:
            context['object'] = object_name
        super().__init__(code, "restore", str(context['phase']), message, cause, context)


class MultiError(Exception):
    """Collects validation errors so they can be reported together."""

    def __init__(self, component: str, operation: str):
        self.errors: List[StandardError] = []
        self.component = component
        self.operation = operation
        super().__init__()

    def add(self, error: StandardError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def messages(self) -> List[str]:
        return [err.message for err in self.errors]

    def __str__(self) -> str:
        if not self.errors:
            return "no errors"
        if len(self.errors) == 1:
            return str(self.errors[0])
        return f"{self.operation}: {len(self.errors)} errors, first: {self.errors[0]}"


def new_validation_error(component: str, field: str, message: str) -> StandardError:
    """Create a validation error tagged with the offending field."""
    return StandardError(ErrorCode.VALIDATION, component, "validation", message).with_context("field", field)


class ErrorFormatter:
    """Turns errors into one-line messages for the terminal."""

    HINTS = {
        ErrorCode.COMMAND_TIMEOUT: "kubectl did not answer in time, check cluster connectivity",
        ErrorCode.PERMISSION: "permission denied, check your cluster role bindings",
        ErrorCode.CONFIGURATION: "check kubectl and the kubeconfig in use",
    }

    def to_user_friendly(self, error: Exception) -> str:
        if isinstance(error, RestoreError):
            where = f" ({error.object_name})" if error.object_name else ""
            return f"Restore failed during {error.operation}{where}: {error.message}"

        if isinstance(error, StandardError):
            hint = self.HINTS.get(error.code)
            return f"{error.message} ({hint})" if hint else error.message

        return f"Unexpected error: {error}"


default_formatter = ErrorFormatter()
