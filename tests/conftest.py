"""
Test fixtures for the sync uploader.
"""
import threading
import time
from pathlib import Path

import boto3
import pytest
from moto import mock_aws as moto_mock_aws

from sync_uploader.config import EndpointConfig, SyncConfig
from sync_uploader.models import FileUnit
from sync_uploader.tracker import StateIndex


class FakeStore:
    """In-memory remote store with failure injection."""

    def __init__(self, existing=(), failures=None, reject=(), delay=0.0):
        self.objects = {}
        self.existing = set(existing)
        self.failures = dict(failures or {})
        self.reject = set(reject)
        self.delay = delay
        self.directories = []
        self.put_calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def exists(self, path):
        with self._lock:
            return path in self.existing or path in self.objects

    def create_directory(self, path):
        with self._lock:
            self.directories.append(path)

    def put_file_contents(self, path, content, overwrite=True, content_length=None,
                          on_progress=None):
        with self._lock:
            self.put_calls.append(path)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            data = content.read() if hasattr(content, 'read') else content
            with self._lock:
                if self.failures.get(path, 0) > 0:
                    self.failures[path] -= 1
                    raise ConnectionError(f"simulated remote error for {path}")
                if path in self.reject:
                    return False
                self.objects[path] = data
            if on_progress:
                on_progress(1.0)
            return True
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def tmp_upload_dir(tmp_path):
    """Create a temporary directory for test files."""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    return upload_dir


@pytest.fixture
def tmp_state_file(tmp_path):
    """Create a temporary state file path."""
    return tmp_path / "state" / "upload_state.jsonl"


@pytest.fixture
def state_index(tmp_state_file):
    index = StateIndex(tmp_state_file)
    yield index
    index.close()


@pytest.fixture
def make_config(tmp_upload_dir, tmp_state_file):
    """Build a SyncConfig for the temporary upload directory."""
    def _make(**overrides):
        values = dict(
            directory_path=tmp_upload_dir,
            pack_files_smaller_than=1_000,
            pack_size=10_000,
            endpoints=[EndpointConfig(0, "http://dav.example", "user", "secret", 0, 10 ** 12)],
            state_file=tmp_state_file,
            report_interval=0,
            retry_delay=0,
        )
        values.update(overrides)
        return SyncConfig(**values)
    return _make


def make_unit(path, size, local_path=None):
    return FileUnit(path=path, size=size, local_path=local_path or path)


def write_file(path: Path, size: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    return path


@pytest.fixture
def mock_aws(monkeypatch):
    """Mock S3 using moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with moto_mock_aws():
        s3 = boto3.client('s3')
        s3.create_bucket(Bucket='test-bucket')
        yield s3
