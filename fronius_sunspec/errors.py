"""Error taxonomy for Modbus / SunSpec operations"""

import errno
from enum import Enum
from typing import Optional


class Severity(Enum):
    """Whether the caller may retry the failed operation."""
    TRANSIENT = "transient"
    FATAL = "fatal"


class ModbusError(Exception):
    """
    Error raised by every fallible transport, detection and decode operation.

    Attributes:
        code: errno value classifying the failure
        message: Human readable description including register context
        severity: TRANSIENT (retry allowed) or FATAL (device needs attention)
        exception_code: Modbus exception code for protocol-level NAKs
    """

    def __init__(self, code: int, message: str,
                 severity: Severity = Severity.TRANSIENT,
                 exception_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.severity = severity
        self.exception_code = exception_code

    @classmethod
    def fatal(cls, message: str, code: int = errno.EINVAL,
              exception_code: Optional[int] = None) -> 'ModbusError':
        return cls(code, message, Severity.FATAL, exception_code)

    @classmethod
    def transient(cls, message: str, code: int = errno.EIO) -> 'ModbusError':
        return cls(code, message, Severity.TRANSIENT)

    @classmethod
    def not_validated(cls, operation: str) -> 'ModbusError':
        return cls.fatal(
            f"{operation}: device not validated, call validate_device() first",
            code=errno.ENODATA
        )

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL

    @property
    def is_transient(self) -> bool:
        return self.severity is Severity.TRANSIENT

    def wrap(self, context: str, severity: Optional[Severity] = None) -> 'ModbusError':
        """
        Return a copy of this error prefixed with operation context.

        Args:
            context: Operation name and register window
            severity: Override severity (e.g. escalate to FATAL); keeps the
                original classification when None

        Returns:
            New ModbusError with the same code
        """
        return ModbusError(
            self.code,
            f"{context}: {self.message}",
            severity or self.severity,
            self.exception_code
        )

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.message}"

    def __repr__(self) -> str:
        return (f"ModbusError(code={self.code}, message={self.message!r}, "
                f"severity={self.severity.name})")
