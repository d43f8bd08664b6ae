"""Wiring of stores, clients and services for one process."""

from dataclasses import dataclass
from typing import Optional

from databases import Database

from .assets import AssetService
from .clients import ClientCache
from .deletion import DualResourceDeletionProtocol
from .jobs.extraction import ResultExtractor
from .jobs.lifecycle import ComputeJobLifecycle
from .jobs.runner import JobRunner
from .models import AppConfig
from .records import AssetRecordStore, JobRecordStore
from .results import LocalResultStore


@dataclass
class Container:
    config: AppConfig
    database: Database
    clients: ClientCache
    jobs: JobRecordStore
    assets: AssetRecordStore
    results: LocalResultStore
    runner: JobRunner
    lifecycle: ComputeJobLifecycle
    asset_service: AssetService
    deletion: DualResourceDeletionProtocol


def build_container(
    config: AppConfig,
    database: Database,
    clients: Optional[ClientCache] = None,
    results: Optional[LocalResultStore] = None,
    runner: Optional[JobRunner] = None,
    **lifecycle_kwargs,
) -> Container:
    clients = clients or ClientCache(config)
    results = results or LocalResultStore(
        config.storage.results_dir, public_prefix=config.storage.results_url_prefix
    )
    runner = runner or JobRunner()
    jobs = JobRecordStore(database)
    assets = AssetRecordStore(database)

    def download(key: str) -> bytes:
        return clients.store().download(key)

    extractor = ResultExtractor(results, download=download, mount_prefix=config.storage.mount_prefix)
    lifecycle_kwargs.setdefault("poll_interval", config.polling.interval_s)
    lifecycle_kwargs.setdefault("timeout", config.polling.timeout_s)
    lifecycle = ComputeJobLifecycle(
        jobs,
        backend_provider=clients.backend,
        store_provider=clients.store,
        extractor=extractor,
        runner=runner,
        input_prefix=config.storage.input_prefix,
        **lifecycle_kwargs,
    )
    return Container(
        config=config,
        database=database,
        clients=clients,
        jobs=jobs,
        assets=assets,
        results=results,
        runner=runner,
        lifecycle=lifecycle,
        asset_service=AssetService(assets, clients.store, assets_prefix=config.storage.assets_prefix),
        deletion=DualResourceDeletionProtocol(
            assets,
            clients.store,
            abort_on_store_failure=config.deletion.abort_on_store_failure,
        ),
    )
