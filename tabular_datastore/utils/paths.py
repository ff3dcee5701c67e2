"""Path utilities and working directory management.

This module provides the WorkdirManager class for managing the working
directory structure used by the tabular_datastore CLI.
"""

from __future__ import annotations

import shutil
from pathlib import Path


class WorkdirManager:
    """Manages working directory structure for localized files, databases and logs.

    The working directory follows this structure:
        workdir/
        ├── resources/                  # Localized resource files
        │   └── <unique_identifier>/    # One directory per resource version
        ├── logs/                       # Log files
        ├── state.db                    # Jobs, resource registry and queue
        └── datastore.db                # Imported tables

    Attributes:
        workdir: The root working directory path.
    """

    def __init__(self, workdir: Path) -> None:
        """Initialize the WorkdirManager with a root working directory.

        Args:
            workdir: Path to the root working directory. Can be a string
                that will be converted to Path.
        """
        self._workdir = Path(workdir).resolve()

    @property
    def workdir(self) -> Path:
        """Absolute path to the working directory."""
        return self._workdir

    @property
    def resources_dir(self) -> Path:
        return self._workdir / "resources"

    @property
    def logs_dir(self) -> Path:
        return self._workdir / "logs"

    @property
    def state_db_path(self) -> Path:
        """Path to the SQLite database holding jobs, resources and the queue."""
        return self._workdir / "state.db"

    @property
    def datastore_db_path(self) -> Path:
        """Path to the SQLite database holding imported tables."""
        return self._workdir / "datastore.db"

    def get_resource_dir(self, unique_identifier: str) -> Path:
        """Get the localization directory for a resource version.

        Args:
            unique_identifier: The resource's unique identifier.

        Returns:
            Path to the resource's directory.

        Raises:
            ValueError: If unique_identifier is empty or contains invalid characters.
        """
        self._validate_component(unique_identifier)
        return self.resources_dir / unique_identifier

    def ensure_dirs(self) -> None:
        """Create the resources/ and logs/ directories if they don't exist."""
        self.resources_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def ensure_resource_dir(self, unique_identifier: str) -> Path:
        """Create a resource directory and return its path.

        Raises:
            ValueError: If unique_identifier is empty or contains invalid characters.
        """
        resource_dir = self.get_resource_dir(unique_identifier)
        resource_dir.mkdir(parents=True, exist_ok=True)
        return resource_dir

    def cleanup_resource(self, unique_identifier: str) -> None:
        """Remove a resource directory and its contents.

        Silently succeeds if the directory doesn't exist.

        Raises:
            ValueError: If unique_identifier is empty or contains invalid characters.
            OSError: If the directory cannot be removed due to permissions.
        """
        resource_dir = self.get_resource_dir(unique_identifier)
        if resource_dir.exists():
            shutil.rmtree(resource_dir)

    def get_disk_usage(self) -> dict[str, int]:
        """Calculate disk usage for the workdir.

        Returns:
            Dictionary with area names as keys and bytes used as values.
        """
        usage = {
            "resources": 0,
            "logs": 0,
            "databases": 0,
            "total": 0,
        }

        for name, path in [
            ("resources", self.resources_dir),
            ("logs", self.logs_dir),
        ]:
            if path.exists():
                size = sum(f.stat().st_size for f in path.rglob("*") if f.is_file())
                usage[name] = size
                usage["total"] += size

        for db_path in (self.state_db_path, self.datastore_db_path):
            if db_path.exists():
                size = db_path.stat().st_size
                usage["databases"] += size
                usage["total"] += size

        return usage

    @staticmethod
    def _validate_component(value: str) -> None:
        """Validate a value for use as a single path component.

        Raises:
            ValueError: If value is empty, contains path separators,
                or contains other invalid characters.
        """
        if not value:
            raise ValueError("Path component cannot be empty")

        if not value.strip():
            raise ValueError("Path component cannot be whitespace only")

        invalid_chars = ['/', '\\', '..', '\0']
        for char in invalid_chars:
            if char in value:
                raise ValueError(
                    f"Path component contains invalid character or sequence: {repr(char)}"
                )

    def __repr__(self) -> str:
        return f"WorkdirManager(workdir={self._workdir!r})"
