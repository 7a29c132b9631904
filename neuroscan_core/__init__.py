# =============================================================================
# neuroscan_core/__init__.py
# NeuroScan offline caching & resync core
# =============================================================================
"""
Core package for the NeuroScan screening application's offline layer.

Subpackages:
- neuroscan_core.offline: cache tiers, request interception, offline queue, replay
- neuroscan_core.logging: logging configuration
- neuroscan_core.errors: exception hierarchy and error handling helpers
"""

__version__ = "2.1.0"
