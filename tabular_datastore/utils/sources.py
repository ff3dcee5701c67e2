"""Source detection and parsing utilities for resources.

This module decides how a resource's source location is fetched: over HTTP(S)
or by copying a local file. It also parses files listing many sources for
bulk registration.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse


class SourceType(Enum):
    """Enumeration of supported source locations."""

    HTTP = "http"
    LOCAL = "local"
    UNKNOWN = "unknown"


def detect_source(source: str) -> SourceType:
    """Detect how a source location should be fetched.

    Args:
        source: URL or filesystem path.

    Returns:
        SourceType enum value.

    Examples:
        >>> detect_source("https://example.com/data.csv")
        SourceType.HTTP
        >>> detect_source("file:///tmp/data.csv")
        SourceType.LOCAL
        >>> detect_source("ftp://example.com/data.csv")
        SourceType.UNKNOWN
    """
    if not source or not source.strip():
        return SourceType.UNKNOWN

    source = source.strip()
    scheme = urlparse(source).scheme.lower()

    if scheme in ("http", "https"):
        return SourceType.HTTP

    if scheme == "file":
        return SourceType.LOCAL

    # Bare paths, including Windows drive letters parsed as a one-letter scheme
    if scheme == "" or len(scheme) == 1:
        return SourceType.LOCAL

    return SourceType.UNKNOWN


def local_path_from_source(source: str) -> Path:
    """Convert a LOCAL source (path or file:// URL) to a Path."""
    source = source.strip()
    parsed = urlparse(source)
    if parsed.scheme.lower() == "file":
        return Path(unquote(parsed.path))
    return Path(source).expanduser()


def file_name_from_source(source: str) -> str:
    """Return the file name component of a source location.

    Examples:
        >>> file_name_from_source("https://example.com/files/data.csv?x=1")
        'data.csv'
    """
    if detect_source(source) == SourceType.LOCAL:
        return local_path_from_source(source).name

    name = Path(unquote(urlparse(source.strip()).path)).name
    return name or "resource.csv"


def validate_source(source: str) -> tuple[bool, Optional[str]]:
    """Validate a source location and return validation result with error message.

    Args:
        source: URL or path to validate.

    Returns:
        Tuple of (is_valid, error_message). error_message is None if valid.
    """
    if not source or not source.strip():
        return False, "Source is empty"

    source_type = detect_source(source)

    if source_type == SourceType.UNKNOWN:
        return False, f"Unsupported source: {source.strip()}"

    if source_type == SourceType.HTTP and not urlparse(source.strip()).netloc:
        return False, f"URL has no host: {source.strip()}"

    return True, None


def parse_sources_file(filepath: Path) -> list[tuple[str, SourceType]]:
    """Parse a file containing sources, one per line.

    Empty lines and lines starting with # are skipped.

    Args:
        filepath: Path to the sources file.

    Returns:
        List of tuples: (source, source_type).

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    if not filepath.exists():
        raise FileNotFoundError(f"Sources file not found: {filepath}")

    results: list[tuple[str, SourceType]] = []

    with open(filepath, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            results.append((line, detect_source(line)))

    return results
