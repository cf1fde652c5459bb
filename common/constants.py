"""Project-wide constants (chunk size, concurrency, remote layout, Drive endpoints)."""

CHUNK_SIZE_BYTES: int = 50 * 1024 * 1024  # 50 MiB, below Drive single-request limits

MAX_CONCURRENT_TRANSFERS: int = 8

DEFAULT_ACCOUNT_CAPACITY_BYTES: int = 15 * 1024 * 1024 * 1024  # free-tier Drive quota

REMOTE_ROOT_FOLDER_NAME = "D-DriveChunks"

CHUNK_NAME_SUFFIX = ".part"

STAGING_DIR_PREFIX = "ddrive-staging-"

DEFAULT_DATA_DIR = "~/.ddrive/data"

CATALOG_FILE_NAME = "metadata.json"

TOKENS_DIR_NAME = "tokens"

STAGING_DIR_NAME = "staging"

LOG_FILE_NAME = "ddrive.log"

DEFAULT_CREDENTIALS_PATH = "~/.ddrive/credentials.json"

DRIVE_API_BASE_URL = "https://www.googleapis.com/drive/v3"

DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"

DRIVE_FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

OAUTH_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

OAUTH_TOKEN_URI = "https://oauth2.googleapis.com/token"

OAUTH_SCOPES = (
    "https://www.googleapis.com/auth/drive",
    "openid",
    "email",
)

OAUTH_CALLBACK_HOST = "127.0.0.1"

OAUTH_CALLBACK_PORT = 8080

OAUTH_CALLBACK_TIMEOUT_SECONDS = 300

STREAM_PIECE_SIZE_BYTES = 256 * 1024

PROGRESS_RENDER_INTERVAL_SECONDS = 0.1
