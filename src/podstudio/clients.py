"""Per-settings client cache.

Store and backend clients are built from the current configuration and
reused until the relevant settings change (compared by fingerprint).
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .jobs.backend import ComputeBackend, RunPodBackend
from .models import AppConfig, ComputeSettings, ObjectStoreSettings
from .retry import RetryExecutor
from .storage.client import ObjectStoreClient, create_s3_client
from .storage.errors import is_retryable_store_error

logger = logging.getLogger(__name__)


class ClientCache:
    """Builds clients lazily and rebuilds them when their settings change.

    Args:
        config: application configuration
        s3_client_factory: ``ObjectStoreSettings -> boto3 client``
        backend_factory: ``(ComputeSettings, endpoint_id) -> ComputeBackend``
    """

    def __init__(
        self,
        config: AppConfig,
        s3_client_factory: Callable[[ObjectStoreSettings], Any] = create_s3_client,
        backend_factory: Optional[Callable[[ComputeSettings, str], ComputeBackend]] = None,
    ):
        self.config = config
        self._s3_client_factory = s3_client_factory
        self._backend_factory = backend_factory or self._build_runpod
        self._store: Optional[Tuple[tuple, ObjectStoreClient]] = None
        self._backends: Dict[str, Tuple[tuple, ComputeBackend]] = {}
        self._retired: List[ComputeBackend] = []

    def update_config(self, config: AppConfig) -> None:
        """Swap in new settings; clients are rebuilt lazily on next use."""
        self.config = config
        logger.info(
            "Client settings reloaded (bucket %s, key %s)",
            config.object_store.bucket,
            config.object_store.masked_access_key(),
        )

    def store(self) -> ObjectStoreClient:
        settings = self.config.object_store.require_complete()
        fingerprint = settings.fingerprint()
        if self._store is None or self._store[0] != fingerprint:
            if self._store is not None:
                logger.info("Object store settings changed, rebuilding client")
            retry = self.config.retry
            client = ObjectStoreClient(
                settings,
                executor=RetryExecutor(is_retryable=is_retryable_store_error),
                s3_client=self._s3_client_factory(settings),
                max_attempts=retry.store_max_attempts,
                base_delay_ms=retry.store_base_delay_ms,
                mount_prefix=self.config.storage.mount_prefix,
            )
            self._store = (fingerprint, client)
        return self._store[1]

    def optional_store(self) -> Optional[ObjectStoreClient]:
        if self.config.object_store.missing_fields():
            return None
        return self.store()

    def backend(self, job_type: str) -> ComputeBackend:
        settings = self.config.compute
        endpoint_id = settings.require_endpoint(job_type)
        fingerprint = settings.fingerprint(job_type)
        cached = self._backends.get(job_type)
        if cached is None or cached[0] != fingerprint:
            if cached is not None:
                logger.info("Compute settings for %s changed, rebuilding backend", job_type)
                self._retired.append(cached[1])
            self._backends[job_type] = (fingerprint, self._backend_factory(settings, endpoint_id))
        return self._backends[job_type][1]

    def _build_runpod(self, settings: ComputeSettings, endpoint_id: str) -> ComputeBackend:
        retry = self.config.retry
        return RunPodBackend(
            settings,
            endpoint_id,
            max_attempts=retry.compute_max_attempts,
            base_delay_ms=retry.compute_base_delay_ms,
        )

    async def aclose(self) -> None:
        backends = [backend for _, backend in self._backends.values()] + self._retired
        for backend in backends:
            await backend.aclose()
        self._backends = {}
        self._retired = []
