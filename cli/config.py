"""Configuration management for the D-Drive CLI."""

import json
import os
import shutil
from pathlib import Path

from common.constants import (
    CATALOG_FILE_NAME,
    CHUNK_SIZE_BYTES,
    DEFAULT_ACCOUNT_CAPACITY_BYTES,
    DEFAULT_CREDENTIALS_PATH,
    DEFAULT_DATA_DIR,
    LOG_FILE_NAME,
    MAX_CONCURRENT_TRANSFERS,
    OAUTH_CALLBACK_PORT,
    STAGING_DIR_NAME,
    TOKENS_DIR_NAME,
)
from common.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(os.environ.get("DDRIVE_CONFIG", "~/.ddrive/config.json")).expanduser()


class Config:
    """Manages CLI configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "data_dir": os.environ.get("DDRIVE_DATA_DIR", DEFAULT_DATA_DIR),
        "credentials_path": os.environ.get("DDRIVE_CREDENTIALS_PATH", DEFAULT_CREDENTIALS_PATH),
        "chunk_size_mb": int(os.environ.get("DDRIVE_CHUNK_SIZE_MB", str(CHUNK_SIZE_BYTES // (1024 * 1024)))),
        "max_concurrent_transfers": int(os.environ.get("DDRIVE_MAX_TRANSFERS", str(MAX_CONCURRENT_TRANSFERS))),
        "cleanup_on_failure": True,
        "default_account_capacity_gb": DEFAULT_ACCOUNT_CAPACITY_BYTES // (1024 ** 3),
        "request_timeout": 60,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
        "oauth_callback_port": OAUTH_CALLBACK_PORT,
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.ddrive/config.json)
        """
        self.config_path = Path(config_path)
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        A corrupted file is copied to <name>.json.bak and defaults are used.

        Returns:
            Configuration dictionary
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Config file {self.config_path} is unreadable ({e}); using defaults")
                backup_path = self.config_path.with_suffix('.json.bak')
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config to {backup_path}: {copy_error}")
                return self.DEFAULT_CONFIG.copy()

        config = self.DEFAULT_CONFIG.copy()
        try:
            with open(self.config_path, 'w') as f:
                json.dump(config, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not write default config to {self.config_path}: {e}")
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except IOError as e:
            logger.warning(f"Could not save config to {self.config_path}: {e}")

    def get_data_dir(self) -> Path:
        """Directory holding the catalog, tokens, staging areas and the log."""
        return Path(self.data.get('data_dir', DEFAULT_DATA_DIR)).expanduser()

    def get_catalog_path(self) -> Path:
        return self.get_data_dir() / CATALOG_FILE_NAME

    def get_tokens_dir(self) -> Path:
        return self.get_data_dir() / TOKENS_DIR_NAME

    def get_staging_dir(self) -> Path:
        return self.get_data_dir() / STAGING_DIR_NAME

    def get_log_path(self) -> Path:
        return self.get_data_dir() / LOG_FILE_NAME

    def get_credentials_path(self) -> Path:
        """OAuth client credentials file downloaded from the Google Cloud console."""
        return Path(self.data.get('credentials_path', DEFAULT_CREDENTIALS_PATH)).expanduser()

    def get_chunk_size_bytes(self) -> int:
        """
        Get chunk size in bytes.

        Returns:
            chunk_size_mb converted to bytes (at least 1 MiB)
        """
        return max(1, int(self.data.get('chunk_size_mb', 50))) * 1024 * 1024

    def get_max_concurrent_transfers(self) -> int:
        return max(1, int(self.data.get('max_concurrent_transfers', MAX_CONCURRENT_TRANSFERS)))

    def get_cleanup_on_failure(self) -> bool:
        return bool(self.data.get('cleanup_on_failure', True))

    def get_default_capacity_bytes(self) -> int:
        return int(self.data.get('default_account_capacity_gb', 15)) * 1024 ** 3

    def get_timeout(self) -> int:
        """
        Get request timeout in seconds.

        Returns:
            Timeout value in seconds
        """
        return self.data.get('request_timeout', 60)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            'max_retries': self.data.get('max_retries', 3),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', 2),
        }

    def get_oauth_callback_port(self) -> int:
        return int(self.data.get('oauth_callback_port', OAUTH_CALLBACK_PORT))
