"""HTTP client for the Google Drive v3 API, implementing the StorageBackend interface."""

import json
import threading
import time
from pathlib import Path
from typing import Iterator, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from common.constants import (
    DRIVE_API_BASE_URL,
    DRIVE_FOLDER_MIME_TYPE,
    DRIVE_UPLOAD_URL,
    OAUTH_AUTH_URI,
    OAUTH_TOKEN_URI,
    STREAM_PIECE_SIZE_BYTES,
)
from common.logging_config import get_logger
from common.types import StorageAccount
from engine.backend import BackendFactory, ProgressCallback
from engine.exceptions import (
    AuthenticationRequiredError,
    ConfigurationError,
    RemoteRequestError,
)

logger = get_logger(__name__)

PathLike = Union[str, Path]


class ClientCredentials(BaseModel):
    """OAuth client registration (the 'installed' section of the Google credentials file)."""
    client_id: str
    client_secret: str
    auth_uri: str = OAUTH_AUTH_URI
    token_uri: str = OAUTH_TOKEN_URI


def load_client_credentials(path: PathLike) -> ClientCredentials:
    """
    Read OAuth client credentials downloaded from the Google Cloud console.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    path = Path(path).expanduser()
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except FileNotFoundError:
        raise ConfigurationError(f"OAuth client credentials not found: {path}") from None
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read OAuth client credentials {path}: {e}") from e

    section = data.get('installed') or data.get('web') if isinstance(data, dict) else None
    if not section:
        raise ConfigurationError(f"{path} has no 'installed' client section")
    try:
        return ClientCredentials.model_validate(section)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid OAuth client credentials in {path}: {e}") from e


def _escape_query_value(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


class GoogleDriveClient:
    """
    One Drive session for one linked account.

    Tokens live in the account's token file and are refreshed with the OAuth
    client credentials. The underlying httpx.Client is shared by all worker
    threads of a transfer batch.
    """

    def __init__(
        self,
        account_id: str,
        token_path: PathLike,
        credentials: ClientCredentials,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_backoff_multiplier: float = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Args:
            account_id: Account e-mail, used in messages
            token_path: JSON token file written by the authorization flow
            credentials: OAuth client credentials
            timeout: Per-request timeout in seconds
            max_retries: Retries on 5xx responses and network errors
            retry_backoff_multiplier: Base of the exponential retry delay
            transport: Optional httpx transport (tests)
        """
        self.account_id = account_id
        self.token_path = Path(token_path).expanduser()
        self.credentials = credentials
        self.max_retries = max_retries
        self.retry_backoff_multiplier = retry_backoff_multiplier
        self.session = httpx.Client(
            base_url=DRIVE_API_BASE_URL,
            timeout=timeout,
            transport=transport,
        )
        self._tokens: dict = {}
        self._token_lock = threading.Lock()

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def _load_tokens(self) -> dict:
        try:
            return json.loads(self.token_path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable token file for {self.account_id} at {self.token_path}: {e}")
            return {}

    def _save_tokens(self) -> None:
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(json.dumps(self._tokens, indent=4), encoding='utf-8')

    def authenticate(self) -> None:
        """
        Load the stored tokens and obtain a fresh access token.

        Raises:
            AuthenticationRequiredError: If there is no refresh token or it was rejected
            RemoteRequestError: If the token endpoint keeps failing
        """
        with self._token_lock:
            self._tokens = self._load_tokens()
            if not self._tokens.get('refresh_token'):
                raise AuthenticationRequiredError(self.account_id, "no stored refresh token")
            self._refresh_locked()

    def _refresh_locked(self) -> None:
        response = self._request_with_retry(
            'POST',
            self.credentials.token_uri,
            data={
                'refresh_token': self._tokens['refresh_token'],
                'client_id': self.credentials.client_id,
                'client_secret': self.credentials.client_secret,
                'grant_type': 'refresh_token',
            },
            authorized=False,
        )

        if response.status_code == 200:
            self._tokens['access_token'] = response.json()['access_token']
            self._save_tokens()
            logger.debug(f"Refreshed access token for {self.account_id}")
            return

        if response.status_code in (400, 401):
            raise AuthenticationRequiredError(self.account_id, "refresh token was rejected")

        raise RemoteRequestError(
            f"Token refresh for {self.account_id} failed: {self._format_error(response)}",
            response.status_code,
        )

    def _refresh_after_unauthorized(self, rejected_token: Optional[str]) -> None:
        """Refresh once per expired token, even when many workers hit the 401 together."""
        with self._token_lock:
            if self._tokens.get('access_token') != rejected_token:
                return
            logger.info(f"Access token for {self.account_id} expired, refreshing")
            self._refresh_locked()

    def _auth_header(self) -> dict:
        access_token = self._tokens.get('access_token')
        if not access_token:
            raise AuthenticationRequiredError(self.account_id, "session not authenticated")
        return {'Authorization': f'Bearer {access_token}'}

    def _request_with_retry(
        self,
        method: str,
        url: str,
        authorized: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """
        Make an HTTP request with retry logic on 5xx errors and network failures.

        A 401 on an authorized request triggers one token refresh and a retry.

        Raises:
            RemoteRequestError: If retries are exhausted on network errors, or on any
                other transport or protocol error
        """
        refreshed = False
        attempt = 0

        while True:
            headers = dict(kwargs.pop('headers', None) or {})
            token_used = None
            if authorized:
                headers.update(self._auth_header())
                token_used = self._tokens.get('access_token')
            kwargs['headers'] = headers

            try:
                response = self.session.request(method, url, **kwargs)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt < self.max_retries:
                    delay = self.retry_backoff_multiplier ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{self.max_retries + 1}): "
                        f"{method} {url} error={type(e).__name__}, retrying in {delay}s"
                    )
                    time.sleep(delay)
                    attempt += 1
                    continue
                raise RemoteRequestError(f"{method} {url} failed after {attempt + 1} attempt(s): {e}") from e
            except httpx.HTTPError as e:
                raise RemoteRequestError(f"{method} {url} failed: {e}") from e

            logger.debug(f"Response received: {method} {url} status={response.status_code}")

            if response.status_code == 401 and authorized and not refreshed:
                refreshed = True
                self._refresh_after_unauthorized(token_used)
                continue

            if response.status_code >= 500 and attempt < self.max_retries:
                delay = self.retry_backoff_multiplier ** attempt
                logger.warning(
                    f"Server error (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{method} {url} status={response.status_code}, retrying in {delay}s"
                )
                time.sleep(delay)
                attempt += 1
                continue

            return response

    @staticmethod
    def _format_error(response: httpx.Response) -> str:
        """Extract a readable message from a Drive or OAuth error response."""
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text or 'no details'}"

        error = data.get('error') if isinstance(data, dict) else None
        if isinstance(error, dict):
            return f"HTTP {response.status_code}: {error.get('message', 'unknown error')}"
        if isinstance(error, str):
            description = data.get('error_description')
            return f"HTTP {response.status_code}: {error}" + (f" ({description})" if description else "")
        return f"HTTP {response.status_code}"

    def find_folder(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        parent = parent_id or 'root'
        query = (
            f"name = '{_escape_query_value(name)}' and '{parent}' in parents "
            f"and mimeType = '{DRIVE_FOLDER_MIME_TYPE}' and trashed = false"
        )
        response = self._request_with_retry(
            'GET', '/files', params={'q': query, 'fields': 'files(id, name)'}
        )
        if response.status_code != 200:
            raise RemoteRequestError(
                f"Folder lookup '{name}' failed: {self._format_error(response)}", response.status_code
            )
        files = response.json().get('files', [])
        return files[0]['id'] if files else None

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        response = self._request_with_retry(
            'POST',
            '/files',
            params={'fields': 'id'},
            json={
                'name': name,
                'mimeType': DRIVE_FOLDER_MIME_TYPE,
                'parents': [parent_id or 'root'],
            },
        )
        if response.status_code != 200:
            raise RemoteRequestError(
                f"Failed to create folder '{name}': {self._format_error(response)}", response.status_code
            )
        folder_id = response.json()['id']
        logger.info(f"Created folder '{name}' ({folder_id}) on {self.account_id}")
        return folder_id

    def find_or_create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        return self.find_folder(name, parent_id) or self.create_folder(name, parent_id)

    @staticmethod
    def _stream_with_progress(data: bytes, on_progress: Optional[ProgressCallback]) -> Iterator[bytes]:
        sent = 0
        view = memoryview(data)
        while sent < len(data):
            piece = bytes(view[sent:sent + STREAM_PIECE_SIZE_BYTES])
            sent += len(piece)
            yield piece
            if on_progress is not None:
                on_progress(sent)

    def upload_chunk(
        self,
        data: bytes,
        remote_name: str,
        folder_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Upload one chunk with a resumable-upload session.

        The session is opened with retries; the body is sent once, streamed
        in pieces so on_progress sees cumulative bytes.

        Returns:
            Drive file id of the chunk
        """
        response = self._request_with_retry(
            'POST',
            DRIVE_UPLOAD_URL,
            params={'uploadType': 'resumable'},
            json={'name': remote_name, 'parents': [folder_id]},
            headers={
                'X-Upload-Content-Type': 'application/octet-stream',
                'X-Upload-Content-Length': str(len(data)),
            },
        )
        if response.status_code != 200 or 'Location' not in response.headers:
            raise RemoteRequestError(
                f"Could not open upload session for {remote_name}: {self._format_error(response)}",
                response.status_code,
            )
        session_url = response.headers['Location']

        try:
            response = self.session.put(
                session_url,
                content=self._stream_with_progress(data, on_progress),
                headers={
                    **self._auth_header(),
                    'Content-Type': 'application/octet-stream',
                    'Content-Length': str(len(data)),
                },
            )
        except httpx.HTTPError as e:
            raise RemoteRequestError(f"Upload of {remote_name} failed: {e}") from e

        if response.status_code not in (200, 201):
            raise RemoteRequestError(
                f"Upload of {remote_name} failed: {self._format_error(response)}", response.status_code
            )
        return response.json()['id']

    def download_chunk(self, remote_id: str, on_progress: Optional[ProgressCallback] = None) -> bytes:
        """Download one chunk, streaming so on_progress sees cumulative bytes."""
        refreshed = False
        while True:
            token_used = self._tokens.get('access_token')
            try:
                with self.session.stream(
                    'GET',
                    f'/files/{remote_id}',
                    params={'alt': 'media'},
                    headers=self._auth_header(),
                ) as response:
                    if response.status_code == 401 and not refreshed:
                        response.read()
                        refreshed = True
                        self._refresh_after_unauthorized(token_used)
                        continue
                    if response.status_code != 200:
                        response.read()
                        raise RemoteRequestError(
                            f"Download of {remote_id} failed: {self._format_error(response)}",
                            response.status_code,
                        )

                    buffer = bytearray()
                    for piece in response.iter_bytes(chunk_size=STREAM_PIECE_SIZE_BYTES):
                        buffer.extend(piece)
                        if on_progress is not None:
                            on_progress(len(buffer))
                    return bytes(buffer)
            except httpx.HTTPError as e:
                raise RemoteRequestError(f"Download of {remote_id} failed: {e}") from e

    def delete_chunk(self, remote_id: str) -> None:
        """Delete one chunk; a chunk that no longer exists counts as deleted."""
        response = self._request_with_retry('DELETE', f'/files/{remote_id}')
        if response.status_code in (200, 204):
            return
        if response.status_code == 404:
            logger.debug(f"Chunk {remote_id} already absent on {self.account_id}")
            return
        raise RemoteRequestError(
            f"Delete of {remote_id} failed: {self._format_error(response)}", response.status_code
        )

    def get_storage_quota(self) -> Optional[int]:
        """Total storage limit of the account in bytes, or None if unlimited."""
        response = self._request_with_retry('GET', '/about', params={'fields': 'storageQuota'})
        if response.status_code != 200:
            raise RemoteRequestError(
                f"Quota lookup for {self.account_id} failed: {self._format_error(response)}",
                response.status_code,
            )
        limit = response.json().get('storageQuota', {}).get('limit')
        return int(limit) if limit is not None else None


def make_backend_factory(
    credentials_path: PathLike,
    timeout: float = 60.0,
    max_retries: int = 3,
    retry_backoff_multiplier: float = 2,
    transport: Optional[httpx.BaseTransport] = None,
) -> BackendFactory:
    """
    Build the engine's backend factory for Google Drive accounts.

    Client credentials are read on first use so commands that never touch
    the network work without them.
    """
    cached: dict = {}

    def factory(account: StorageAccount) -> GoogleDriveClient:
        if 'credentials' not in cached:
            cached['credentials'] = load_client_credentials(credentials_path)
        return GoogleDriveClient(
            account_id=account.account_id,
            token_path=account.token_path,
            credentials=cached['credentials'],
            timeout=timeout,
            max_retries=max_retries,
            retry_backoff_multiplier=retry_backoff_multiplier,
            transport=transport,
        )

    return factory
