"""Command handler functions for CLI operations."""

from typing import Optional

from common.logging_config import get_logger
from cli.config import Config
from cli.models import (
    AddAccountCommand,
    DeleteCommand,
    DownloadCommand,
    ListAccountsCommand,
    ListFilesCommand,
    UploadCommand,
)
from cli.utils import ProgressPrinter, format_file_size, format_table
from drive.gdrive_client import make_backend_factory
from drive.oauth_flow import OAuthFlow, discover_token_files
from engine.catalog import Catalog
from engine.distribution_engine import DistributionEngine
from engine.exceptions import DDriveException, TransferFailureError
from engine.transfer_scheduler import TransferScheduler

logger = get_logger(__name__)


_config: Optional[Config] = None
_engine: Optional[DistributionEngine] = None
_oauth: Optional[OAuthFlow] = None


def get_config() -> Config:
    """
    Get or create global Config instance.

    Returns:
        Config loaded from DDRIVE_CONFIG or ~/.ddrive/config.json
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_oauth_flow() -> OAuthFlow:
    """
    Get or create global OAuthFlow instance.

    Returns:
        OAuthFlow storing tokens in the configured tokens directory
    """
    global _oauth
    if _oauth is None:
        config = get_config()
        _oauth = OAuthFlow(
            credentials_path=config.get_credentials_path(),
            tokens_dir=config.get_tokens_dir(),
            port=config.get_oauth_callback_port(),
        )
    return _oauth


def get_engine() -> DistributionEngine:
    """
    Get or create global DistributionEngine instance.

    Loads the catalog, links any token files not yet in it and wires the
    Google Drive backend, the progress printer and the OAuth authorizer.

    Returns:
        DistributionEngine instance
    """
    global _engine
    if _engine is None:
        logger.debug("Creating new DistributionEngine instance")
        config = get_config()
        retry = config.get_retry_config()
        catalog = Catalog(config.get_catalog_path()).load()
        _engine = DistributionEngine(
            catalog=catalog,
            backend_factory=make_backend_factory(
                config.get_credentials_path(),
                timeout=config.get_timeout(),
                max_retries=retry['max_retries'],
                retry_backoff_multiplier=retry['retry_backoff_multiplier'],
            ),
            scheduler=TransferScheduler(
                max_concurrent=config.get_max_concurrent_transfers(),
                renderer=ProgressPrinter(),
            ),
            chunk_size=config.get_chunk_size_bytes(),
            staging_root=config.get_staging_dir(),
            cleanup_on_failure=config.get_cleanup_on_failure(),
            authorizer=get_oauth_flow().reauthorize,
            default_capacity_bytes=config.get_default_capacity_bytes(),
        )
        link_existing_tokens(_engine, config)
    return _engine


def link_existing_tokens(engine: DistributionEngine, config: Config) -> int:
    """
    Link token files found in the tokens directory that the catalog lacks.

    Capacity is set to the configured default without a network round trip.

    Returns:
        Number of accounts linked
    """
    known = {account.account_id for account in engine.list_accounts()}
    linked = 0
    for account_id, token_path in discover_token_files(config.get_tokens_dir()).items():
        if account_id in known:
            continue
        try:
            engine.link_account(account_id, token_path, total_bytes=config.get_default_capacity_bytes())
            linked += 1
            logger.info(f"Linked existing token file for {account_id}")
        except DDriveException as e:
            logger.warning(f"Could not link existing token file {token_path}: {e}")
    return linked


def handle_add_account(
    cmd: AddAccountCommand,
    engine: Optional[DistributionEngine] = None,
    oauth: Optional[OAuthFlow] = None,
) -> str:
    """
    Handle 'add-account' command.

    Args:
        cmd: AddAccountCommand with optional expected email
        engine: Optional DistributionEngine for dependency injection (testing)
        oauth: Optional OAuthFlow for dependency injection (testing)

    Returns:
        Success or error message
    """
    if engine is None:
        engine = get_engine()
    if oauth is None:
        oauth = get_oauth_flow()

    try:
        email, token_path = oauth.authorize_new_account(expected_email=cmd.email)
        account = engine.link_account(email, token_path)
    except DDriveException as e:
        return f"Error: {e}"

    return (
        f"Linked account {account.account_id} "
        f"({format_file_size(account.free_bytes)} free of {format_file_size(account.total_bytes)})"
    )


def handle_upload(cmd: UploadCommand, engine: Optional[DistributionEngine] = None) -> str:
    """
    Handle 'upload' command.

    Args:
        cmd: UploadCommand with local path and optional logical name
        engine: Optional DistributionEngine for dependency injection (testing)

    Returns:
        Success or error message
    """
    if engine is None:
        engine = get_engine()

    try:
        report = engine.upload(cmd.path, cmd.name)
    except TransferFailureError as e:
        return _format_transfer_failure(e)
    except DDriveException as e:
        return f"Error: {e}"

    chunk_word = "chunk" if report.chunk_count == 1 else "chunks"
    return (
        f"Uploaded '{report.name}' ({format_file_size(report.total_size_bytes)}) "
        f"as {report.chunk_count} {chunk_word} across {', '.join(report.accounts)}"
    )


def handle_download(cmd: DownloadCommand, engine: Optional[DistributionEngine] = None) -> str:
    """
    Handle 'download' command.

    Args:
        cmd: DownloadCommand with logical name and save path
        engine: Optional DistributionEngine for dependency injection (testing)

    Returns:
        Success or error message
    """
    if engine is None:
        engine = get_engine()

    try:
        report = engine.download(cmd.name, cmd.save_path)
    except TransferFailureError as e:
        return _format_transfer_failure(e)
    except DDriveException as e:
        return f"Error: {e}"

    return f"Downloaded '{report.name}' ({format_file_size(report.total_size_bytes)}) to {report.dest_path}"


def handle_delete(cmd: DeleteCommand, engine: Optional[DistributionEngine] = None) -> str:
    """
    Handle 'delete' command.

    Args:
        cmd: DeleteCommand with logical name
        engine: Optional DistributionEngine for dependency injection (testing)

    Returns:
        Success, warning or error message
    """
    if engine is None:
        engine = get_engine()

    try:
        report = engine.delete(cmd.name)
    except DDriveException as e:
        return f"Error: {e}"

    if report.failed_chunks:
        parts = ", ".join(str(f.part_number) for f in report.failures)
        return (
            f"Deleted '{report.name}' from the catalog; "
            f"Warning: {report.failed_chunks} of {report.chunk_count} remote chunks could not be removed (parts {parts})"
        )
    return f"Deleted '{report.name}' ({report.chunk_count} chunks)"


def handle_list_files(cmd: ListFilesCommand, engine: Optional[DistributionEngine] = None) -> str:
    """
    Handle 'list-files' command.

    Returns:
        Table of managed files or a message when none exist
    """
    if engine is None:
        engine = get_engine()

    files = engine.list_files()
    if not files:
        return "No files stored"

    rows = [
        [
            managed.name,
            format_file_size(managed.total_size_bytes),
            str(len(managed.chunks)),
            ", ".join(managed.accounts_used()),
        ]
        for managed in files
    ]
    return format_table(["NAME", "SIZE", "CHUNKS", "ACCOUNTS"], rows)


def handle_list_accounts(cmd: ListAccountsCommand, engine: Optional[DistributionEngine] = None) -> str:
    """
    Handle 'list-accounts' command.

    Returns:
        Table of linked accounts with usage or a hint to add one
    """
    if engine is None:
        engine = get_engine()

    accounts = engine.list_accounts()
    if not accounts:
        return "No accounts linked. Use 'add-account' to link a Google Drive account."

    rows = [
        [
            account.account_id,
            format_file_size(account.used_bytes),
            format_file_size(account.free_bytes),
            format_file_size(account.total_bytes),
        ]
        for account in accounts
    ]
    used = sum(a.used_bytes for a in accounts)
    total = sum(a.total_bytes for a in accounts)
    table = format_table(["ACCOUNT", "USED", "FREE", "TOTAL"], rows)
    return f"{table}\n\nTotal: {format_file_size(used)} used of {format_file_size(total)}"


def _format_transfer_failure(error: TransferFailureError) -> str:
    message = f"Error: {error}"
    if error.orphaned_chunks:
        message += f"\nWarning: {error.orphaned_chunks} uploaded chunks could not be removed and remain on the accounts"
    return message
