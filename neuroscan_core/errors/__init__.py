# =============================================================================
# neuroscan_core/errors/__init__.py
# Centralized Error Handling for the NeuroScan offline layer
# =============================================================================

from .exceptions import (
    NeuroScanError,
    StorageError,
    InstallError,
    WorkerStateError,
    ConfigurationError,
)

from .handlers import handle_error

__all__ = [
    # Exceptions
    "NeuroScanError",
    "StorageError",
    "InstallError",
    "WorkerStateError",
    "ConfigurationError",
    # Handlers
    "handle_error",
]
