"""
kernel_finder Version Management - Centralized version for all components

This module provides a single source of truth for the package version.
The version doubles as the schema version of persisted kernel caches: a cache
written by another version is discarded on load.
"""

# =============================================================================
# Version - Single Source of Truth
# =============================================================================

__version__ = "0.4.2"

# Build metadata
BUILD_DATE = "2026-10-18"


def get_short_banner() -> str:
    """Get a compact version banner."""
    return f"kernel_finder v{__version__} | {BUILD_DATE}"
