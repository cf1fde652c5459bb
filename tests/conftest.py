"""Shared pytest fixtures for all tests."""

import itertools
import threading
import time

import pytest
from cli.config import Config
from common.types import StorageAccount
from engine.catalog import Catalog
from engine.distribution_engine import DistributionEngine
from engine.exceptions import AuthenticationRequiredError, RemoteRequestError
from engine.transfer_scheduler import TransferScheduler


class FakeDrive:
    """
    In-memory remote storage shared by every FakeBackend of one account.

    Tracks concurrent transfers so tests can check the worker pool bound.
    """

    def __init__(self, account_id: str):
        self.account_id = account_id
        self.files = {}
        self.folders = {}
        self.quota = None
        self.fail_upload_names = set()
        self.fail_download_ids = set()
        self.fail_delete_ids = set()
        self.needs_auth = False
        self.transfer_delay = 0.0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.upload_calls = []
        self.delete_calls = []

    def next_id(self, kind: str) -> str:
        with self._lock:
            return f"{self.account_id}-{kind}-{next(self._ids)}"

    def enter(self) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def leave(self) -> None:
        with self._lock:
            self.active -= 1


class FakeBackend:
    """StorageBackend over a FakeDrive."""

    def __init__(self, drive: FakeDrive, registry: "FakeDriveRegistry"):
        self.drive = drive
        self.registry = registry
        self.authenticated = False
        self.closed = False

    def authenticate(self) -> None:
        if self.drive.needs_auth:
            raise AuthenticationRequiredError(self.drive.account_id, "refresh token revoked")
        self.authenticated = True

    def find_or_create_folder(self, name, parent_id=None):
        key = (name, parent_id)
        with self.drive._lock:
            if key not in self.drive.folders:
                self.drive.folders[key] = f"{self.drive.account_id}-folder-{len(self.drive.folders) + 1}"
            return self.drive.folders[key]

    def upload_chunk(self, data, remote_name, folder_id, on_progress=None):
        self.drive.enter()
        self.registry.enter()
        try:
            if self.drive.transfer_delay:
                time.sleep(self.drive.transfer_delay)
            self.drive.upload_calls.append(remote_name)
            if remote_name in self.drive.fail_upload_names:
                raise RemoteRequestError(f"Upload of {remote_name} rejected", status_code=500)
            half = len(data) // 2
            if on_progress is not None and half:
                on_progress(half)
            remote_id = self.drive.next_id("file")
            with self.drive._lock:
                self.drive.files[remote_id] = (remote_name, folder_id, bytes(data))
            if on_progress is not None:
                on_progress(len(data))
            return remote_id
        finally:
            self.registry.leave()
            self.drive.leave()

    def download_chunk(self, remote_id, on_progress=None):
        self.drive.enter()
        self.registry.enter()
        try:
            if self.drive.transfer_delay:
                time.sleep(self.drive.transfer_delay)
            if remote_id in self.drive.fail_download_ids:
                raise RemoteRequestError(f"Download of {remote_id} failed", status_code=503)
            try:
                data = self.drive.files[remote_id][2]
            except KeyError:
                raise RemoteRequestError(f"File {remote_id} not found", status_code=404) from None
            if on_progress is not None:
                on_progress(len(data))
            return data
        finally:
            self.registry.leave()
            self.drive.leave()

    def delete_chunk(self, remote_id):
        self.drive.delete_calls.append(remote_id)
        if remote_id in self.drive.fail_delete_ids:
            raise RemoteRequestError(f"Delete of {remote_id} failed", status_code=500)
        with self.drive._lock:
            self.drive.files.pop(remote_id, None)

    def get_storage_quota(self):
        return self.drive.quota

    def close(self):
        self.closed = True


class FakeDriveRegistry:
    """Backend factory handing out FakeBackends, one FakeDrive per account."""

    def __init__(self):
        self.drives = {}
        self.created = []
        self.backends = []
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def drive(self, account_id: str) -> FakeDrive:
        if account_id not in self.drives:
            self.drives[account_id] = FakeDrive(account_id)
        return self.drives[account_id]

    def enter(self) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def leave(self) -> None:
        with self._lock:
            self.active -= 1

    def __call__(self, account: StorageAccount) -> FakeBackend:
        backend = FakeBackend(self.drive(account.account_id), self)
        self.created.append(account.account_id)
        self.backends.append(backend)
        return backend

    def open_backends(self) -> list:
        return [b for b in self.backends if not b.closed]


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .ddrive directory
    """
    config_dir = tmp_path / '.ddrive'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing uploads.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to a 25-byte file with distinct content per position
    """
    file_path = tmp_path / 'sample.bin'
    file_path.write_bytes(bytes(range(65, 65 + 25)))
    return file_path


@pytest.fixture
def drives():
    return FakeDriveRegistry()


@pytest.fixture
def catalog(tmp_path):
    return Catalog(tmp_path / 'data' / 'metadata.json').load()


@pytest.fixture
def staging_root(tmp_path):
    return tmp_path / 'staging'


@pytest.fixture
def make_engine(catalog, drives, staging_root):
    """
    Build a DistributionEngine over fake drives.

    Accounts are given as (account_id, total_bytes) pairs and linked in order.
    """

    def factory(accounts=(("a@example.com", 100), ("b@example.com", 100)), chunk_size=10, **kwargs):
        for account_id, total in accounts:
            catalog.add_account(StorageAccount(account_id, f"/tokens/{account_id}.json", total))
        kwargs.setdefault("scheduler", TransferScheduler(max_concurrent=4))
        return DistributionEngine(
            catalog=catalog,
            backend_factory=drives,
            chunk_size=chunk_size,
            staging_root=staging_root,
            **kwargs,
        )

    return factory
