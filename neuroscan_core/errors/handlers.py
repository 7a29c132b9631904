# =============================================================================
# neuroscan_core/errors/handlers.py
# Error Handling Utilities for the NeuroScan offline layer
# =============================================================================

from __future__ import annotations
import traceback
from typing import Any, Dict, Optional

from neuroscan_core.logging import get_logger
from .exceptions import NeuroScanError

logger = get_logger(__name__)


def handle_error(
    error: BaseException,
    log_error: bool = True,
    context: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling function.

    The offline layer has no user-facing surface, so handling means logging
    the failure with its code and returning a serializable summary that
    callers can keep in their status displays.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        context: Short description of what was being attempted

    Returns:
        Dictionary describing the error
    """
    if isinstance(error, NeuroScanError):
        summary = error.to_dict()
    else:
        summary = {
            "error_type": error.__class__.__name__,
            "code": "UNKNOWN",
            "message": str(error),
            "details": {"traceback": traceback.format_exception_only(type(error), error)[-1].strip()},
            "recoverable": True,
        }

    if context:
        summary["context"] = context

    if log_error:
        prefix = f"{context}: " if context else ""
        logger.error(
            f"{prefix}[{summary['code']}] {summary['message']}",
            extra={"details": summary["details"]},
            exc_info=(type(error), error, error.__traceback__),
        )

    return summary
