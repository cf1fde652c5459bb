"""Unit tests for GoogleDriveClient over a mocked HTTP transport."""

import json

import httpx
import pytest

from common.types import StorageAccount
from drive.gdrive_client import (
    ClientCredentials,
    GoogleDriveClient,
    load_client_credentials,
    make_backend_factory,
)
from engine.exceptions import AuthenticationRequiredError, ConfigurationError, RemoteRequestError

CREDENTIALS = ClientCredentials(client_id="cid", client_secret="secret")
UPLOAD_SESSION = "https://www.googleapis.com/upload/drive/v3/files?upload_id=session1"


class DriveApi:
    """Scriptable stand-in for the Drive and OAuth endpoints."""

    def __init__(self):
        self.requests = []
        self.token_status = 200
        self.access_tokens = iter(f"access-{i}" for i in range(1, 100))
        self.valid_token = None
        self.files = {"chunk-1": b"remote chunk bytes"}
        self.folders = {}
        self.fail_statuses = []
        self.quota = {"limit": "16106127360", "usage": "1024"}
        self.uploaded = None
        self.protocol_error = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "oauth2.googleapis.com":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            self.valid_token = next(self.access_tokens)
            return httpx.Response(200, json={"access_token": self.valid_token, "expires_in": 3599})

        if self.protocol_error:
            raise httpx.RemoteProtocolError("Server disconnected without sending a response.", request=request)

        if request.headers.get("Authorization") != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        if self.fail_statuses:
            return httpx.Response(self.fail_statuses.pop(0), json={"error": {"message": "backend error"}})

        if path == "/upload/drive/v3/files" and request.method == "POST":
            return httpx.Response(200, headers={"Location": UPLOAD_SESSION})
        if path == "/upload/drive/v3/files" and request.method == "PUT":
            self.uploaded = request.content
            return httpx.Response(200, json={"id": "new-chunk"})
        if path == "/drive/v3/files" and request.method == "GET":
            query = request.url.params["q"]
            matches = [{"id": fid, "name": name} for (name, fid) in self.folders.items() if f"name = '{name}'" in query]
            return httpx.Response(200, json={"files": matches})
        if path == "/drive/v3/files" and request.method == "POST":
            body = json.loads(request.content)
            folder_id = f"folder-{len(self.folders) + 1}"
            self.folders[body["name"]] = folder_id
            return httpx.Response(200, json={"id": folder_id})
        if path == "/drive/v3/about":
            return httpx.Response(200, json={"storageQuota": self.quota})
        if path.startswith("/drive/v3/files/"):
            file_id = path.rsplit("/", 1)[-1]
            if request.method == "DELETE":
                if self.files.pop(file_id, None) is None:
                    return httpx.Response(404, json={"error": {"message": "File not found"}})
                return httpx.Response(204)
            if file_id not in self.files:
                return httpx.Response(404, json={"error": {"message": "File not found"}})
            return httpx.Response(200, content=self.files[file_id])

        return httpx.Response(404)


@pytest.fixture
def api():
    return DriveApi()


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "tokens" / "a@example.com.json"
    path.parent.mkdir()
    path.write_text(json.dumps({"refresh_token": "refresh-1", "access_token": "stale"}))
    return path


@pytest.fixture
def client(api, token_file, monkeypatch):
    monkeypatch.setattr("drive.gdrive_client.time.sleep", lambda seconds: None)
    drive = GoogleDriveClient(
        "a@example.com",
        token_file,
        CREDENTIALS,
        max_retries=2,
        transport=httpx.MockTransport(api.handler),
    )
    drive.authenticate()
    return drive


class TestAuthentication:
    """Test token loading and refresh."""

    def test_authenticate_refreshes_and_stores_access_token(self, client, token_file):
        stored = json.loads(token_file.read_text())

        assert stored["access_token"] == "access-1"
        assert stored["refresh_token"] == "refresh-1"

    def test_missing_refresh_token_requires_authentication(self, api, tmp_path):
        drive = GoogleDriveClient("a@example.com", tmp_path / "none.json", CREDENTIALS,
                                  transport=httpx.MockTransport(api.handler))

        with pytest.raises(AuthenticationRequiredError):
            drive.authenticate()

    def test_rejected_refresh_token_requires_authentication(self, api, token_file):
        api.token_status = 400
        drive = GoogleDriveClient("a@example.com", token_file, CREDENTIALS,
                                  transport=httpx.MockTransport(api.handler))

        with pytest.raises(AuthenticationRequiredError):
            drive.authenticate()

    def test_expired_access_token_is_refreshed_once(self, client, api):
        api.valid_token = "rotated-elsewhere"

        client.delete_chunk("chunk-1")

        token_requests = [r for r in api.requests if r.url.host == "oauth2.googleapis.com"]
        assert len(token_requests) == 2
        assert "chunk-1" not in api.files


class TestRequests:
    """Test Drive operations."""

    def test_upload_chunk_streams_body_and_reports_progress(self, client, api):
        progress = []

        remote_id = client.upload_chunk(b"x" * 1000, "movie.part1", "folder-9", progress.append)

        assert remote_id == "new-chunk"
        assert api.uploaded == b"x" * 1000
        assert progress[-1] == 1000
        session_request = next(r for r in api.requests if r.method == "POST" and "upload" in r.url.path)
        assert json.loads(session_request.content) == {"name": "movie.part1", "parents": ["folder-9"]}
        assert session_request.headers["X-Upload-Content-Length"] == "1000"

    def test_download_chunk(self, client):
        progress = []

        data = client.download_chunk("chunk-1", progress.append)

        assert data == b"remote chunk bytes"
        assert progress[-1] == len(data)

    def test_download_missing_chunk_raises(self, client):
        with pytest.raises(RemoteRequestError) as exc_info:
            client.download_chunk("nope")

        assert exc_info.value.status_code == 404

    def test_delete_missing_chunk_is_not_an_error(self, client):
        client.delete_chunk("already-gone")

    def test_server_errors_are_retried(self, client, api):
        api.fail_statuses = [503, 500]

        client.delete_chunk("chunk-1")

        assert "chunk-1" not in api.files

    def test_retries_exhausted_raises(self, client, api):
        api.fail_statuses = [503, 503, 503]

        with pytest.raises(RemoteRequestError) as exc_info:
            client.delete_chunk("chunk-1")

        assert exc_info.value.status_code == 503

    def test_find_or_create_folder_reuses_existing(self, client, api):
        first = client.find_or_create_folder("D-DriveChunks")
        second = client.find_or_create_folder("D-DriveChunks")

        assert first == second == "folder-1"
        assert len(api.folders) == 1

    def test_protocol_errors_are_reported_as_remote_errors(self, client, api):
        api.protocol_error = True

        with pytest.raises(RemoteRequestError, match="Server disconnected"):
            client.find_or_create_folder("D-DriveChunks")
        with pytest.raises(RemoteRequestError):
            client.get_storage_quota()

    def test_storage_quota(self, client, api):
        assert client.get_storage_quota() == 16106127360

        api.quota = {"usage": "10"}
        assert client.get_storage_quota() is None


class TestCredentials:
    """Test client credential loading and the backend factory."""

    def test_load_installed_section(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"installed": {"client_id": "cid", "client_secret": "s"}}))

        credentials = load_client_credentials(path)

        assert credentials.client_id == "cid"
        assert credentials.token_uri == "https://oauth2.googleapis.com/token"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_client_credentials(tmp_path / "missing.json")

    def test_missing_section(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"other": {}}))

        with pytest.raises(ConfigurationError):
            load_client_credentials(path)

    def test_factory_builds_client_per_account(self, tmp_path, api):
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"installed": {"client_id": "cid", "client_secret": "s"}}))
        factory = make_backend_factory(path, transport=httpx.MockTransport(api.handler))

        backend = factory(StorageAccount("a@example.com", str(tmp_path / "a.json"), 100))

        assert isinstance(backend, GoogleDriveClient)
        assert backend.account_id == "a@example.com"

    def test_factory_defers_credential_errors_until_used(self, tmp_path):
        factory = make_backend_factory(tmp_path / "missing.json")

        with pytest.raises(ConfigurationError):
            factory(StorageAccount("a@example.com", "a.json", 100))
