"""Interactive OAuth authorization for linking Google Drive accounts."""

import base64
import json
import secrets
import threading
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse

from common.constants import (
    OAUTH_CALLBACK_HOST,
    OAUTH_CALLBACK_PORT,
    OAUTH_CALLBACK_TIMEOUT_SECONDS,
    OAUTH_SCOPES,
)
from common.logging_config import get_logger
from common.types import StorageAccount
from drive.gdrive_client import ClientCredentials, load_client_credentials
from engine.exceptions import AuthorizationFlowError

logger = get_logger(__name__)

PathLike = Union[str, Path]

SUCCESS_PAGE = "<html><body><h3>D-Drive: authorization complete.</h3>You can close this window.</body></html>"
FAILURE_PAGE = "<html><body><h3>D-Drive: authorization failed.</h3>{reason}</body></html>"


@dataclass
class CallbackResult:
    """Outcome of the redirect back from the consent screen."""
    expected_state: str
    code: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        self.received = threading.Event()


def build_authorization_url(
    credentials: ClientCredentials,
    redirect_uri: str,
    state: str,
    scopes=OAUTH_SCOPES,
) -> str:
    """Consent-screen URL requesting offline access (so a refresh token is issued)."""
    url = httpx.URL(
        credentials.auth_uri,
        params={
            'client_id': credentials.client_id,
            'redirect_uri': redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(scopes),
            'access_type': 'offline',
            'prompt': 'consent',
            'state': state,
        },
    )
    return str(url)


def create_callback_app(result: CallbackResult) -> FastAPI:
    """
    Build the one-shot app that receives the authorization redirect.

    The first request carrying a code or an error completes the result.
    """
    app = FastAPI(title="D-Drive authorization callback", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/", response_class=HTMLResponse)
    async def callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None):
        if result.received.is_set():
            return HTMLResponse(SUCCESS_PAGE)

        if error:
            result.error = error
        elif state != result.expected_state:
            result.error = "state mismatch"
        elif not code:
            return HTMLResponse(FAILURE_PAGE.format(reason="missing authorization code"), status_code=400)
        else:
            result.code = code

        result.received.set()
        if result.error:
            return HTMLResponse(FAILURE_PAGE.format(reason=result.error), status_code=400)
        return HTMLResponse(SUCCESS_PAGE)

    return app


def wait_for_authorization_code(
    result: CallbackResult,
    host: str = OAUTH_CALLBACK_HOST,
    port: int = OAUTH_CALLBACK_PORT,
    timeout: float = OAUTH_CALLBACK_TIMEOUT_SECONDS,
    on_ready: Optional[Callable[[], None]] = None,
) -> str:
    """
    Serve the callback app on a local port until the redirect arrives.

    Args:
        result: Shared result the callback fills in
        host: Listen address
        port: Listen port (must match the redirect URI)
        timeout: Seconds to wait for the user
        on_ready: Called once the listener thread is started (opens the browser)

    Raises:
        AuthorizationFlowError: On timeout, a denied consent or a state mismatch
    """
    config = uvicorn.Config(create_callback_app(result), host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, daemon=True, name="OAuthCallback")
    thread.start()
    logger.info(f"Waiting for authorization callback on http://{host}:{port}/")

    try:
        if on_ready is not None:
            on_ready()
        if not result.received.wait(timeout=timeout):
            raise AuthorizationFlowError(f"No authorization received within {timeout:.0f}s")
    finally:
        server.should_exit = True
        thread.join(timeout=5.0)

    if result.error:
        raise AuthorizationFlowError(f"Authorization failed: {result.error}")
    return result.code


def exchange_code(
    credentials: ClientCredentials,
    code: str,
    redirect_uri: str,
    client: Optional[httpx.Client] = None,
) -> dict:
    """
    Exchange an authorization code for tokens.

    Raises:
        AuthorizationFlowError: If the token endpoint rejects the code
    """
    owns_client = client is None
    client = client or httpx.Client(timeout=30)
    try:
        response = client.post(
            credentials.token_uri,
            data={
                'code': code,
                'client_id': credentials.client_id,
                'client_secret': credentials.client_secret,
                'redirect_uri': redirect_uri,
                'grant_type': 'authorization_code',
            },
        )
    except httpx.HTTPError as e:
        raise AuthorizationFlowError(f"Token exchange failed: {e}") from e
    finally:
        if owns_client:
            client.close()

    if response.status_code != 200:
        raise AuthorizationFlowError(f"Token exchange failed with HTTP {response.status_code}: {response.text}")

    tokens = response.json()
    if not tokens.get('refresh_token'):
        raise AuthorizationFlowError("Token response has no refresh token")
    return tokens


def email_from_id_token(id_token: str) -> str:
    """
    Read the account e-mail from an ID token payload.

    The token comes straight from the token endpoint over TLS, so the
    signature is not verified.
    """
    parts = id_token.split('.')
    if len(parts) != 3:
        raise AuthorizationFlowError("Invalid ID token format")

    payload_segment = parts[1] + '=' * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_segment))
    except ValueError as e:
        raise AuthorizationFlowError(f"Cannot decode ID token payload: {e}") from e

    email = payload.get('email')
    if not email:
        raise AuthorizationFlowError("ID token carries no e-mail address")
    return email


def save_tokens(tokens: dict, token_path: PathLike) -> Path:
    path = Path(token_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(tokens, indent=4), encoding='utf-8')
    return path


class OAuthFlow:
    """
    Runs the browser consent flow and stores tokens per account.

    Used by 'add-account' for new accounts and by the engine as its
    authorizer when a stored session can no longer be refreshed.
    """

    def __init__(
        self,
        credentials_path: PathLike,
        tokens_dir: PathLike,
        host: str = OAUTH_CALLBACK_HOST,
        port: int = OAUTH_CALLBACK_PORT,
        timeout: float = OAUTH_CALLBACK_TIMEOUT_SECONDS,
        open_browser: Callable[[str], bool] = webbrowser.open,
        http_client: Optional[httpx.Client] = None,
        wait_for_code: Callable[..., str] = wait_for_authorization_code,
    ):
        self.credentials_path = credentials_path
        self.tokens_dir = Path(tokens_dir).expanduser()
        self.host = host
        self.port = port
        self.timeout = timeout
        self.open_browser = open_browser
        self.http_client = http_client
        self.wait_for_code = wait_for_code

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}/"

    def token_path_for(self, email: str) -> Path:
        return self.tokens_dir / f"{email}.json"

    def _run(self) -> Tuple[str, dict]:
        credentials = load_client_credentials(self.credentials_path)
        result = CallbackResult(expected_state=secrets.token_urlsafe(16))
        url = build_authorization_url(credentials, self.redirect_uri, result.expected_state)

        def prompt_user() -> None:
            print(f"Opening browser for authorization. If it does not open, visit:\n{url}")
            self.open_browser(url)

        code = self.wait_for_code(result, host=self.host, port=self.port, timeout=self.timeout, on_ready=prompt_user)
        tokens = exchange_code(credentials, code, self.redirect_uri, client=self.http_client)

        if not tokens.get('id_token'):
            raise AuthorizationFlowError("ID token not found after authentication")
        return email_from_id_token(tokens['id_token']), tokens

    def authorize_new_account(self, expected_email: Optional[str] = None) -> Tuple[str, Path]:
        """
        Authorize an account and store its tokens under tokens_dir/<email>.json.

        Returns:
            (email, token_path)
        """
        email, tokens = self._run()
        if expected_email and email.lower() != expected_email.lower():
            raise AuthorizationFlowError(f"Authorized as {email}, expected {expected_email}")
        path = save_tokens(tokens, self.token_path_for(email))
        logger.info(f"Authorized account {email}")
        return email, path

    def reauthorize(self, account: StorageAccount) -> None:
        """Engine authorizer: refresh the stored tokens of an already linked account."""
        email, tokens = self._run()
        if email.lower() != account.account_id.lower():
            raise AuthorizationFlowError(f"Authorized as {email}, expected {account.account_id}")
        save_tokens(tokens, account.token_path)
        logger.info(f"Re-authorized account {email}")


def discover_token_files(tokens_dir: PathLike) -> Dict[str, Path]:
    """
    Map account e-mail to token file for every <email>.json under tokens_dir.

    Lets accounts authorized before the catalog existed be linked again.
    """
    directory = Path(tokens_dir).expanduser()
    if not directory.is_dir():
        return {}
    return {
        path.stem: path
        for path in sorted(directory.glob("*.json"))
        if "@" in path.stem
    }
