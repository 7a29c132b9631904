# =============================================================================
# neuroscan_core/errors/exceptions.py
# Custom Exception Hierarchy for the NeuroScan offline layer
# =============================================================================

from typing import Optional, Dict, Any


class NeuroScanError(Exception):
    """
    Base exception for all NeuroScan offline-layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORAGE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "NS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# STORAGE EXCEPTIONS
# =============================================================================

class StorageError(NeuroScanError):
    """Raised when the local SQLite store cannot be read or written"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key

        super().__init__(
            message=message,
            code="STORAGE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# WORKER LIFECYCLE EXCEPTIONS
# =============================================================================

class InstallError(NeuroScanError):
    """Raised when static pre-population fails and the install is aborted"""

    def __init__(
        self,
        message: str,
        asset: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if asset:
            details["asset"] = asset
        if status is not None:
            details["status"] = status

        super().__init__(
            message=message,
            code="SW_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


class WorkerStateError(NeuroScanError):
    """Raised when a lifecycle step is requested in the wrong worker state"""

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
        expected: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if state:
            details["state"] = state
        if expected:
            details["expected"] = expected

        super().__init__(
            message=message,
            code="SW_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(NeuroScanError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
