"""Command-line interface for s3-tree-clone."""

import os
import pwd
from typing import Dict, Optional, Tuple

import typer
import yaml
from rich.console import Console
from typing_extensions import Annotated

from s3_tree_clone import __version__
from s3_tree_clone.config import Config, parse_destination, split_source
from s3_tree_clone.config_manager import apply_file_config, get_config_path, load_config
from s3_tree_clone.durations import parse_duration_seconds
from s3_tree_clone.errors import ConfigurationError, UsageError
from s3_tree_clone.sync_engine import TreeClone

app = typer.Typer(
    name="s3-tree-clone",
    help="Copy a local filesystem tree to S3 with File Gateway compatible metadata.",
    add_completion=False,
)
console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

# Users tried in order for --root-squash.
SQUASH_USERS = ("nfsnobody", "nobody")


class Messages:
    INVALID_DESTINATION = "Destination is not a valid S3 URL: {destination}"
    CONFIG_LOAD_ERROR = "Error loading configuration file {path}: {error}"
    INVALID_BACKOFF = "Invalid --max-backoff-delay value: {value}"
    NO_SQUASH_USER = "User nfsnobody does not exist: {error}"
    SOURCE_UNREADABLE = "Unable to open source directory {path}: {error}"
    CLIENT_ERROR = "Failed to load AWS config: {error}"
    INTERRUPTED = "Interrupted; pending requests were cancelled"


USAGE_EPILOG = (
    "SOURCE is interpreted like rsync: if it ends with a /, no directory is created "
    "at the destination; otherwise the directory at the end of SOURCE is created. "
    "A non-empty prefix in DESTINATION has a slash appended if necessary."
)


def report_error(message: str) -> None:
    """Print an error line on stderr without rich markup interpretation."""
    err_console.print(message, markup=False, highlight=False)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"s3-tree-clone {__version__}")
        raise typer.Exit()


def _lookup_squash_ids() -> Tuple[int, int]:
    """Return the uid and gid used in place of root when --root-squash is given."""
    last_error: Optional[KeyError] = None
    for name in SQUASH_USERS:
        try:
            entry = pwd.getpwnam(name)
        except KeyError as e:
            last_error = e
            continue
        return entry.pw_uid, entry.pw_gid
    raise ConfigurationError(Messages.NO_SQUASH_USER.format(error=last_error))


def _parse_backoff(max_retries: Optional[int], value: Optional[str]) -> Optional[float]:
    # Only meaningful when retrying is enabled.
    if value is None or max_retries == 0:
        return None
    try:
        seconds = parse_duration_seconds(value)
    except ValueError:
        seconds = 0
    if seconds <= 0:
        raise ConfigurationError(Messages.INVALID_BACKOFF.format(value=value))
    return seconds


def _load_and_configure(
    bucket: str,
    prefix: str,
    aws_overrides: Dict[str, object],
    s3_overrides: Dict[str, object],
    sync_overrides: Dict[str, object],
) -> Config:
    """Layer defaults, the user config file, the environment and CLI options."""
    config_path = get_config_path()
    try:
        file_data = load_config(config_path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(Messages.CONFIG_LOAD_ERROR.format(path=config_path, error=e)) from e

    config = apply_file_config(Config(), file_data)
    config = Config.from_env(config)
    return config.with_overrides(
        aws=aws_overrides,
        s3={"bucket": bucket, "prefix": prefix, **s3_overrides},
        sync=sync_overrides,
    )


def _check_source(base_dir: str) -> None:
    try:
        with os.scandir(base_dir):
            pass
    except OSError as e:
        raise ConfigurationError(Messages.SOURCE_UNREADABLE.format(path=base_dir, error=e)) from e


def _initialize_sync_engine(config: Config) -> TreeClone:
    """Initialize the sync engine with configuration."""
    return TreeClone(config, console=console, err_console=err_console)


@app.command(epilog=USAGE_EPILOG)
def clone(
    source: Annotated[str, typer.Argument(help="Local directory (or entry) to copy")],
    destination: Annotated[str, typer.Argument(help="Destination as s3://<bucket>[/<prefix>]")],
    check_bucket: Annotated[
        Optional[bool],
        typer.Option("--check-bucket/--no-check-bucket", help="Call GetBucketLocation to verify the bucket location."),
    ] = None,
    region: Annotated[Optional[str], typer.Option(help="The AWS region to use.")] = None,
    profile: Annotated[Optional[str], typer.Option(help="The credentials profile to use.")] = None,
    storage_class: Annotated[
        Optional[str],
        typer.Option(help="STANDARD, STANDARD_IA, ONEZONE_IA, INTELLIGENT_TIERING, GLACIER, DEEP_ARCHIVE or OUTPOSTS."),
    ] = None,
    encryption_algorithm: Annotated[
        Optional[str], typer.Option(help="Server-side encryption algorithm: AES256 or aws:kms.")
    ] = None,
    kms_key: Annotated[
        Optional[str], typer.Option(help="KMS key ID used with aws:kms encryption (default aws/s3).")
    ] = None,
    ignore_timestamps: Annotated[
        bool, typer.Option("--ignore-timestamps", help="Ignore file timestamps when comparing files.")
    ] = False,
    max_concurrent: Annotated[
        Optional[int], typer.Option(help="The maximum number of concurrent S3 requests to make.")
    ] = None,
    max_retries: Annotated[Optional[int], typer.Option(help="The maximum number of attempts per request.")] = None,
    max_backoff_delay: Annotated[
        Optional[str], typer.Option(help="The maximum retry backoff delay, such as '1.5m' or '1m30s'.")
    ] = None,
    workers: Annotated[Optional[int], typer.Option(help="Number of worker threads handling entries.")] = None,
    root_squash: Annotated[
        bool, typer.Option("--root-squash", help="Record files owned by root as owned by nfsnobody.")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show verbose details.")] = False,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
    ] = None,
) -> None:
    """Copy the filesystem tree rooted at SOURCE to the given S3 DESTINATION."""
    try:
        bucket, prefix = parse_destination(destination)
    except UsageError:
        report_error(Messages.INVALID_DESTINATION.format(destination=destination))
        raise typer.Exit(2)

    base_dir, first_filter = split_source(source)

    try:
        sync_overrides: Dict[str, object] = {
            "max_concurrent": max_concurrent,
            "max_retries": max_retries,
            "workers": workers,
            "ignore_timestamps": True if ignore_timestamps else None,
            "verbose": True if verbose else None,
        }
        if root_squash:
            sync_overrides["root_uid"], sync_overrides["root_gid"] = _lookup_squash_ids()

        config = _load_and_configure(
            bucket,
            prefix,
            aws_overrides={"profile": profile, "region": region},
            s3_overrides={
                "storage_class": storage_class,
                "encryption_algorithm": encryption_algorithm,
                "kms_key_id": kms_key,
                "check_bucket": check_bucket,
            },
            sync_overrides=sync_overrides,
        )
        backoff = _parse_backoff(config.sync.max_retries, max_backoff_delay)
        if backoff is not None:
            config = config.with_overrides(sync={"max_backoff_delay": backoff})

        try:
            engine = _initialize_sync_engine(config)
        except Exception as e:
            raise ConfigurationError(Messages.CLIENT_ERROR.format(error=e)) from e

        if config.s3.check_bucket:
            engine.check_bucket()

        _check_source(base_dir)
    except ConfigurationError as e:
        report_error(str(e))
        raise typer.Exit(1)

    try:
        completed = engine.run(base_dir, first_filter)
    except KeyboardInterrupt:
        report_error(Messages.INTERRUPTED)
        raise typer.Exit(1)

    if not completed:
        raise typer.Exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
