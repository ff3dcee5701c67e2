"""Resource identity and the collection key format used by queries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# Separates identifier and version inside unique identifiers and query collections
SEPARATOR = "__"


@dataclass(frozen=True)
class Resource:
    """A tabular data file known to the localizer.

    Attributes:
        identifier: Resource UUID.
        version: Resource version, None meaning unversioned/latest.
        file_path: Source URL or local path of the file.
        mime_type: MIME type of the file.
    """

    identifier: str
    version: Optional[str] = None
    file_path: str = ""
    mime_type: str = "text/csv"

    @property
    def unique_identifier(self) -> str:
        return build_unique_identifier(self.identifier, self.version)


def build_unique_identifier(identifier: str, version: Optional[str] = None) -> str:
    """Join an identifier and optional version into one key.

    Examples:
        >>> build_unique_identifier("abc-123", "2")
        'abc-123__2'
        >>> build_unique_identifier("abc-123")
        'abc-123'
    """
    if version:
        return f"{identifier}{SEPARATOR}{version}"
    return identifier


def parse_unique_identifier(key: str) -> tuple[str, Optional[str]]:
    """Split a unique identifier or query collection into identifier and version.

    The key is split on the first separator; a key without one has no version.

    Examples:
        >>> parse_unique_identifier("abc-123__2")
        ('abc-123', '2')
        >>> parse_unique_identifier("abc-123")
        ('abc-123', None)
    """
    identifier, _, version = key.partition(SEPARATOR)
    return identifier, version or None
