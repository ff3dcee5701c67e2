"""Tests for the unified job listing."""

from unittest.mock import MagicMock

from tabular_datastore.core.listing import JobLister
from tabular_datastore.core.results import JobResult, JobStatus
from tabular_datastore.core.state import JobRecord


class TestJobLister:
    """Tests for projecting job records into list entries."""

    def test_empty(self, job_store):
        assert JobLister(job_store).get_list() == {}

    def test_fetched_not_imported(self, job_store):
        """A resource without an import job reports the importer as WAITING."""
        job_store.save(
            "ResourceLocalizer",
            "abc__1",
            JobResult(
                JobStatus.DONE,
                data={"file_name": "data.csv", "bytes_copied": 2048},
            ),
        )

        entry = JobLister(job_store).get_list()["abc__1"]

        assert entry.identifier == "abc"
        assert entry.version == "1"
        assert entry.file_name == "data.csv"
        assert entry.fetcher_status == JobStatus.DONE
        assert entry.fetcher_bytes == 2048
        assert entry.fetcher_percent_done == 100
        assert entry.importer_status == JobStatus.WAITING
        assert entry.importer_percent_done == 0
        assert entry.importer_error is None

    def test_import_error_is_reported(self, job_store):
        job_store.save("ResourceLocalizer", "abc__1", JobResult(JobStatus.DONE))
        job_store.save("Import", "abc__1", JobResult(JobStatus.ERROR, message="bad header"))

        entry = JobLister(job_store).get_list()["abc__1"]

        assert entry.importer_status == JobStatus.ERROR
        assert entry.importer_error == "bad header"

    def test_in_progress(self, job_store):
        job_store.save(
            "ResourceLocalizer",
            "abc__1",
            JobResult(JobStatus.IN_PROGRESS, data={"bytes_copied": 10, "percent_done": 25}),
        )

        entry = JobLister(job_store).get_list()["abc__1"]

        assert entry.fetcher_percent_done == 25
        assert entry.file_name == ""

    def test_import_only_jobs_are_not_listed(self, job_store):
        """Only resources with a localizer job are listed."""
        job_store.save("Import", "orphan__1", JobResult(JobStatus.DONE))
        assert JobLister(job_store).get_list() == {}

    def test_to_dict(self, job_store):
        job_store.save("ResourceLocalizer", "abc__1", JobResult(JobStatus.DONE))

        data = JobLister(job_store).get_list()["abc__1"].to_dict()

        assert data["fileFetcherStatus"] == "done"
        assert data["importerStatus"] == "waiting"
        assert data["importerError"] is None

    def test_custom_namespaces(self):
        """Namespaces are configurable and read on every call."""
        record = MagicMock(spec=JobRecord)
        record.key = "abc"
        record.result = JobResult(JobStatus.DONE)
        store = MagicMock()
        store.retrieve_all.return_value = [record]
        store.get_result.return_value = JobResult(JobStatus.IN_PROGRESS, data={"percent_done": 50})

        listing = JobLister(store, "Fetch", "Load").get_list()

        store.retrieve_all.assert_called_once_with("Fetch")
        store.get_result.assert_called_once_with("Load", "abc")
        assert listing["abc"].version is None
        assert listing["abc"].importer_percent_done == 50
