"""
tabular_datastore.importers - Import services and table storage.

Import services are chosen per resource by MIME type and load localized
files into DatabaseTable storage.
"""

from tabular_datastore.importers.csv_import import (
    CsvImportService,
    ImportServiceFactory,
    TsvImportService,
    UnsupportedImportService,
    sanitize_headers,
    table_name_for,
)
from tabular_datastore.importers.database_table import DatabaseTable

__all__ = [
    "CsvImportService",
    "DatabaseTable",
    "ImportServiceFactory",
    "TsvImportService",
    "UnsupportedImportService",
    "sanitize_headers",
    "table_name_for",
]
