"""Shared pytest fixtures for tabular_datastore tests."""

import pytest
import tempfile
from pathlib import Path
from typing import Optional

from tabular_datastore.core.results import JobResult, JobStatus
from tabular_datastore.core.resource import Resource


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests.

    Yields:
        Path to the temporary directory that is automatically
        cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def workdir_manager(temp_dir):
    """Create a WorkdirManager with a temporary directory.

    Args:
        temp_dir: Temporary directory fixture.

    Returns:
        Initialized WorkdirManager instance.
    """
    from tabular_datastore.utils.paths import WorkdirManager

    manager = WorkdirManager(temp_dir / "work")
    manager.ensure_dirs()
    return manager


@pytest.fixture
def job_store(workdir_manager):
    """Create an initialized JobStore in the workdir's state database."""
    from tabular_datastore.core.state import JobStore

    store = JobStore(workdir_manager.state_db_path)
    store.init_db()
    return store


@pytest.fixture
def localizer(workdir_manager, job_store):
    """Create an initialized ResourceLocalizer with fast retries."""
    from tabular_datastore.localizers.resource_localizer import ResourceLocalizer

    resource_localizer = ResourceLocalizer(workdir_manager, job_store, max_retries=2)
    resource_localizer.init_db()
    return resource_localizer


@pytest.fixture
def sample_csv_file(temp_dir):
    """Create a small CSV file with human-readable headers.

    Returns:
        Path to the created CSV file.
    """
    csv_path = temp_dir / "people.csv"
    csv_path.write_text(
        "First Name,Age,State\n"
        "Alice,34,CA\n"
        "Bob,27,NY\n"
        "Carol,45,CA\n"
        "Dan,19,TX\n",
        encoding="utf-8",
    )
    return csv_path


@pytest.fixture
def sample_sources_file(temp_dir):
    """Create a sources file with comments, blank lines and one unsupported source."""
    content = """# Sources to register

https://example.com/data/people.csv
/data/local/counts.tsv

# Unsupported scheme
ftp://example.com/data.csv
"""
    sources_file = temp_dir / "sources.txt"
    sources_file.write_text(content, encoding="utf-8")
    return sources_file


@pytest.fixture
def datastore_service(temp_dir):
    """Create a DatastoreService wired to real SQLite collaborators."""
    from tabular_datastore.core.service import DatastoreConfig, create_service

    config = DatastoreConfig(workdir=temp_dir / "datastore", max_retries=1, batch_size=2)
    return create_service(config)


class FakeStorage:
    """In-memory storage returning canned rows."""

    def __init__(self, rows=None, schema=None, count=0):
        self.rows = rows or []
        self.schema = schema or {"primary_key": ["record_number"], "fields": {}}
        self.count = count
        self.queries = []
        self.destroyed = False

    def query(self, query):
        self.queries.append(query)
        if query.count:
            return [{"expression": self.count}]
        return [dict(row) for row in self.rows]

    def get_schema(self):
        return self.schema

    def destroy(self):
        self.destroyed = True


class FakeLocalizer:
    """Localizer double whose localize() outcome is configurable."""

    label = "ResourceLocalizer"

    def __init__(self, localized: Optional[Resource] = None, outcome: JobStatus = JobStatus.DONE):
        self.localized = localized
        self.outcome = outcome
        self.pending = Resource("res-1", "1", "/tmp/res-1.csv")
        self.localize_calls = 0
        self.removed = []
        self.result = JobResult(JobStatus.DONE) if localized else JobResult(JobStatus.WAITING)

    def get(self, identifier, version=None):
        return self.localized

    def localize(self, identifier, version=None):
        self.localize_calls += 1
        if self.outcome == JobStatus.DONE:
            self.localized = self.pending
            self.result = JobResult(JobStatus.DONE)
        else:
            self.result = JobResult(self.outcome, message="source unreachable")
        return self.result

    def remove(self, identifier, version=None):
        self.removed.append((identifier, version))
        self.localized = None

    def get_result(self, identifier, version=None):
        return self.result


class FakeImportService:
    """Import service double recording import_data() calls."""

    label = "Import"

    def __init__(self, storage, status=JobStatus.DONE):
        self.storage = storage
        self.status = status
        self.import_calls = 0

    def import_data(self):
        self.import_calls += 1

    def get_result(self):
        if self.import_calls:
            return JobResult(self.status)
        return JobResult(JobStatus.WAITING)

    def get_storage(self):
        return self.storage


class FakeImportFactory:
    """Factory returning one shared FakeImportService."""

    def __init__(self, import_service):
        self.import_service = import_service
        self.requested = []

    def get_instance(self, unique_identifier, *, resource):
        self.requested.append(unique_identifier)
        return self.import_service


class FakeQueue:
    """Queue double; create_item returns next_id (None to refuse items)."""

    def __init__(self, next_id: Optional[int] = 1):
        self.next_id = next_id
        self.items = []

    def create_item(self, payload):
        self.items.append(payload)
        return self.next_id


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_localizer():
    return FakeLocalizer()


@pytest.fixture
def fake_import_service(fake_storage):
    return FakeImportService(fake_storage)


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest.fixture
def make_service(temp_dir, job_store, fake_queue):
    """Build a DatastoreService around fake collaborators.

    Returns:
        Function taking (localizer, import_service, queue=None).
    """
    from tabular_datastore.core.service import DatastoreConfig, DatastoreService

    def _make(localizer, import_service, queue=None):
        return DatastoreService(
            localizer=localizer,
            import_factory=FakeImportFactory(import_service),
            queue=queue if queue is not None else fake_queue,
            job_store=job_store,
            config=DatastoreConfig(workdir=temp_dir),
        )

    return _make
