"""Tests for CSV/TSV import services and the import service factory."""

import pytest

from tabular_datastore.core.query import Query
from tabular_datastore.core.resource import Resource
from tabular_datastore.core.results import JobResult, JobStatus
from tabular_datastore.importers.csv_import import (
    CsvImportService,
    ImportServiceFactory,
    TsvImportService,
    UnsupportedImportService,
    sanitize_headers,
    table_name_for,
)


@pytest.fixture
def factory(workdir_manager, job_store):
    """Create an ImportServiceFactory with a small batch size."""
    return ImportServiceFactory(workdir_manager.datastore_db_path, job_store, batch_size=2)


class TestSanitizeHeaders:
    """Tests for header to column name conversion."""

    def test_lowercase_and_underscores(self):
        fields = sanitize_headers(["First Name", "Age (years)"])

        assert list(fields) == ["first_name", "age_years"]
        assert fields["first_name"] == {"type": "text", "description": "First Name"}

    def test_duplicates_get_suffix(self):
        assert list(sanitize_headers(["State", "state", "STATE"])) == ["state", "state_2", "state_3"]

    def test_empty_header(self):
        """Empty headers get a positional name and no description."""
        fields = sanitize_headers(["", "Name"])

        assert list(fields) == ["column_1", "name"]
        assert "description" not in fields["column_1"]

    def test_leading_digit(self):
        assert list(sanitize_headers(["2020 Total"])) == ["_2020_total"]

    def test_record_number_is_reserved(self):
        assert list(sanitize_headers(["record_number"])) == ["record_number_2"]

    def test_long_names_are_truncated(self):
        fields = sanitize_headers(["x" * 100, "x" * 100])

        names = list(fields)
        assert all(len(name) <= 64 for name in names)
        assert names[0] != names[1]


class TestImportServiceFactory:
    """Tests for choosing an import service."""

    def test_csv(self, factory):
        resource = Resource("a", "1", "/tmp/a.csv", "text/csv")
        service = factory.get_instance(resource.unique_identifier, resource=resource)

        assert type(service) is CsvImportService
        assert service.get_storage().table_name == table_name_for("a__1")

    def test_tsv(self, factory):
        resource = Resource("a", "1", "/tmp/a.tsv", "text/tab-separated-values")
        assert isinstance(factory.get_instance("a__1", resource=resource), TsvImportService)

    def test_unsupported(self, factory):
        resource = Resource("a", "1", "/tmp/a.xlsx", "application/vnd.ms-excel")
        assert isinstance(factory.get_instance("a__1", resource=resource), UnsupportedImportService)

    def test_table_name_is_stable(self):
        assert table_name_for("a__1") == table_name_for("a__1")
        assert table_name_for("a__1") != table_name_for("a__2")
        assert table_name_for("a__1").startswith("datastore_")


class TestCsvImport:
    """Tests for loading files into tables."""

    def test_import_csv(self, factory, sample_csv_file):
        """All data rows are loaded and the job ends DONE."""
        resource = Resource("people", "1", str(sample_csv_file))
        service = factory.get_instance("people__1", resource=resource)

        assert service.get_result().status == JobStatus.WAITING
        service.import_data()

        result = service.get_result()
        assert result.status == JobStatus.DONE
        assert result.data["rows_imported"] == 4
        assert result.percent_done == 100

        table = service.get_storage()
        assert table.count() == 4
        rows = table.query(Query(collection="people__1", properties=["first_name", "state"]))
        assert rows[1] == {"first_name": "Bob", "state": "NY"}

    def test_import_tsv(self, factory, temp_dir):
        tsv_path = temp_dir / "counts.tsv"
        tsv_path.write_text("City\tCount\nParis\t3\nOslo\t5\n", encoding="utf-8")
        resource = Resource("counts", "1", str(tsv_path), "text/tab-separated-values")
        service = factory.get_instance("counts__1", resource=resource)

        service.import_data()

        rows = service.get_storage().query(Query(collection="counts__1"))
        assert rows == [
            {"record_number": 1, "city": "Paris", "count": "3"},
            {"record_number": 2, "city": "Oslo", "count": "5"},
        ]

    def test_ragged_rows_are_skipped(self, factory, temp_dir):
        """Rows with the wrong number of fields are skipped and counted."""
        csv_path = temp_dir / "ragged.csv"
        csv_path.write_text("a,b\n1\n2,3,4\n5,6\n\n", encoding="utf-8")
        resource = Resource("ragged", "1", str(csv_path))
        service = factory.get_instance("ragged__1", resource=resource)

        service.import_data()

        result = service.get_result()
        assert result.status == JobStatus.DONE
        assert result.data["rows_imported"] == 1
        assert result.data["rows_skipped"] == 2
        rows = service.get_storage().query(Query(collection="ragged__1", properties=["a", "b"]))
        assert rows == [{"a": "5", "b": "6"}]

    def test_values_stay_text(self, factory, temp_dir):
        """Numeric-looking values keep their leading zeros."""
        csv_path = temp_dir / "codes.csv"
        csv_path.write_text('Code,Note\n007,"a, b"\n010,\n', encoding="utf-8")
        service = factory.get_instance("codes__1", resource=Resource("codes", "1", str(csv_path)))

        service.import_data()

        rows = service.get_storage().query(Query(collection="codes__1", properties=["code", "note"]))
        assert rows == [{"code": "007", "note": "a, b"}, {"code": "010", "note": ""}]

    def test_batches_larger_than_file(self, workdir_manager, job_store, sample_csv_file):
        factory = ImportServiceFactory(workdir_manager.datastore_db_path, job_store, batch_size=100)
        resource = Resource("people", "1", str(sample_csv_file))
        service = factory.get_instance("people__1", resource=resource)

        service.import_data()

        assert service.get_storage().count() == 4

    def test_utf8_bom_header(self, factory, temp_dir):
        csv_path = temp_dir / "bom.csv"
        csv_path.write_bytes("\ufeffName\nÉlodie\n".encode("utf-8"))
        service = factory.get_instance("bom__1", resource=Resource("bom", "1", str(csv_path)))

        service.import_data()

        assert list(service.get_storage().get_schema()["fields"]) == ["name"]

    def test_empty_file_is_error(self, factory, temp_dir):
        csv_path = temp_dir / "empty.csv"
        csv_path.write_text("", encoding="utf-8")
        service = factory.get_instance("empty__1", resource=Resource("empty", "1", str(csv_path)))

        service.import_data()

        result = service.get_result()
        assert result.status == JobStatus.ERROR
        assert "No header row" in result.message

    def test_missing_file_is_error(self, factory, temp_dir):
        resource = Resource("gone", "1", str(temp_dir / "gone.csv"))
        service = factory.get_instance("gone__1", resource=resource)

        service.import_data()

        assert service.get_result().status == JobStatus.ERROR

    def test_done_import_is_skipped(self, factory, sample_csv_file, job_store):
        """A DONE import with an existing table is not repeated."""
        resource = Resource("people", "1", str(sample_csv_file))
        service = factory.get_instance("people__1", resource=resource)
        service.import_data()
        sample_csv_file.write_text("First Name\nZed\n", encoding="utf-8")

        service.import_data()

        assert service.get_storage().count() == 4

    def test_done_without_table_is_reimported(self, factory, sample_csv_file, job_store):
        """A stale DONE result does not hide a dropped table."""
        job_store.save("Import", "people__1", JobResult(JobStatus.DONE))
        service = factory.get_instance(
            "people__1", resource=Resource("people", "1", str(sample_csv_file))
        )

        service.import_data()

        assert service.get_storage().count() == 4

    def test_unsupported_type_records_error(self, factory):
        resource = Resource("sheet", "1", "/tmp/sheet.xlsx", "application/vnd.ms-excel")
        service = factory.get_instance("sheet__1", resource=resource)

        service.import_data()

        result = service.get_result()
        assert result.status == JobStatus.ERROR
        assert "application/vnd.ms-excel" in result.message
        assert service.get_storage().exists() is False
