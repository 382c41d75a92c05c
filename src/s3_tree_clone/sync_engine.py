"""Tree clone engine: wires the walker, comparator and uploader for one run."""

from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from rich.console import Console

from s3_tree_clone.backend import ObjectStore, S3ObjectStore, create_s3_client, region_from_location
from s3_tree_clone.checksum import ChecksumCalculator
from s3_tree_clone.comparator import Comparator
from s3_tree_clone.config import Config
from s3_tree_clone.errors import ConfigurationError
from s3_tree_clone.limiter import (
    AdmissionLimiter,
    BackendGate,
    CancellationToken,
    RetryPolicy,
    RetryTokenBucket,
)
from s3_tree_clone.uploader import Uploader
from s3_tree_clone.walker import TreeWalker


class TreeClone:
    """Synchronize a local directory tree into an object-store bucket."""

    def __init__(
        self,
        config: Config,
        store: Optional[ObjectStore] = None,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        """Initialize the engine. Without ``store`` an S3 client is created lazily."""
        self.config = config
        self.console = console or Console(soft_wrap=True)
        self.err_console = err_console or Console(stderr=True, soft_wrap=True)
        self.cancel_token = cancel_token or CancellationToken()
        self.checksum_calculator = ChecksumCalculator()
        self._store = store

    @property
    def store(self) -> ObjectStore:
        """Get the object store, creating an S3-backed one lazily with the current config."""
        if self._store is None:
            self._store = S3ObjectStore(self._create_client(self.config.aws.region))
        return self._store

    def _create_client(self, region: Optional[str]):
        return create_s3_client(
            profile=self.config.aws.profile,
            region=region,
            max_pool_connections=self.config.sync.max_concurrent,
        )

    def check_bucket(self, reconfigure: bool = True) -> str:
        """Verify the bucket is reachable and return its region.

        With ``reconfigure`` set and an S3-backed store, the client is rebuilt
        for the bucket's region.
        """
        bucket = self.config.s3.bucket
        try:
            location = self._build_retry().call(self.store.get_bucket_location, bucket)
        except Exception as e:
            raise ConfigurationError(f"Unable to get location for S3 bucket {bucket}: {e}") from e

        region = region_from_location(location)
        if reconfigure and isinstance(self._store, S3ObjectStore):
            try:
                self._store = S3ObjectStore(self._create_client(region), classifier=self._store.classifier)
            except Exception as e:
                raise ConfigurationError(f"Failed to create S3 client for region {region}: {e}") from e
        return region

    def _build_retry(self) -> RetryPolicy:
        sync = self.config.sync
        return RetryPolicy(
            max_attempts=sync.max_retries,
            max_backoff=sync.max_backoff_delay,
            token_bucket=RetryTokenBucket(),
            cancel_token=self.cancel_token,
        )

    def _build_gate(self) -> BackendGate:
        limiter = AdmissionLimiter(self.config.sync.max_concurrent, cancel_token=self.cancel_token)
        return BackendGate(limiter, self._build_retry())

    def _build_walker(self, executor: ThreadPoolExecutor) -> TreeWalker:
        s3 = self.config.s3
        sync = self.config.sync
        gate = self._build_gate()
        comparator = Comparator(
            bucket=s3.bucket,
            root_uid=sync.root_uid,
            root_gid=sync.root_gid,
            ignore_timestamps=sync.ignore_timestamps,
            checksum_calculator=self.checksum_calculator,
            console=self.console,
            err_console=self.err_console,
            verbose=sync.verbose,
        )
        uploader = Uploader(
            store=self.store,
            gate=gate,
            bucket=s3.bucket,
            storage_class=s3.storage_class,
            encryption=s3.encryption_algorithm,
            kms_key_id=s3.kms_key_id,
            root_uid=sync.root_uid,
            root_gid=sync.root_gid,
            checksum_calculator=self.checksum_calculator,
            multipart_threshold=sync.multipart_threshold,
            part_size=sync.part_size,
            part_concurrency=sync.part_concurrency,
            err_console=self.err_console,
        )
        return TreeWalker(
            executor=executor,
            store=self.store,
            gate=gate,
            comparator=comparator,
            uploader=uploader,
            bucket=s3.bucket,
            prefix=s3.prefix,
            verbose=sync.verbose,
            console=self.console,
            err_console=self.err_console,
        )

    def run(self, base_dir: str, first_filter: str = "") -> bool:
        """
        Clone the tree rooted at ``base_dir`` and wait for every entry to finish.

        Args:
            base_dir: Directory whose entries are synchronized
            first_filter: If non-empty, only this child of ``base_dir`` is synchronized

        Returns:
            False if the top-level directory could not be read, True otherwise.
            Failures on individual entries are reported but do not change the result.
        """
        with ThreadPoolExecutor(
            max_workers=self.config.sync.workers, thread_name_prefix="s3-tree-clone"
        ) as executor:
            walker = self._build_walker(executor)
            error = walker.walk("", base_dir, first_filter)
            if error is not None:
                self.err_console.print(f"Walking {base_dir} failed: {error}", markup=False, highlight=False)
                self.cancel_token.cancel()
                walker.wait()
                return False
            try:
                while not walker.wait(timeout=0.5):
                    pass
            except KeyboardInterrupt:
                self.cancel_token.cancel()
                walker.wait()
                raise
        return True
