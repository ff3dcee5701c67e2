"""
tabular_datastore.utils - Utility functions and helpers.

This module contains shared utilities for:
- Logging configuration
- Workdir layout
- Source detection
"""

from tabular_datastore.utils.logging import (
    ResourceLogAdapter,
    get_logger,
    mask_url_sensitive_parts,
    setup_logging,
)
from tabular_datastore.utils.paths import WorkdirManager
from tabular_datastore.utils.sources import (
    SourceType,
    detect_source,
    file_name_from_source,
    local_path_from_source,
    parse_sources_file,
    validate_source,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "ResourceLogAdapter",
    "mask_url_sensitive_parts",
    # Paths
    "WorkdirManager",
    # Sources
    "SourceType",
    "detect_source",
    "file_name_from_source",
    "local_path_from_source",
    "parse_sources_file",
    "validate_source",
]
