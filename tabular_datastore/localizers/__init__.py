"""
tabular_datastore.localizers - Resource registration and localization.

The ResourceLocalizer copies local files or downloads HTTP(S) sources into
the workdir and tracks each localization as a job.
"""

from tabular_datastore.localizers.resource_localizer import (
    ResourceLocalizer,
    SourceAccessError,
    SourceNotFoundError,
    SourceRateLimitError,
)

__all__ = [
    "ResourceLocalizer",
    "SourceAccessError",
    "SourceNotFoundError",
    "SourceRateLimitError",
]
