"""Composition root: builds every collaborator once and hands them out explicitly."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from videocore.core.background import BackgroundRunner
from videocore.core.config import Settings
from videocore.core.jobs import BaseJobBackend, JobDispatcher, get_job_backend
from videocore.core.storage import Storage, get_storage
from videocore.ingest.artifacts import ArtifactPipeline
from videocore.ingest.extractor import MediaExtractor, YtDlpExtractor
from videocore.ingest.torrents import TorfTorrentBuilder, TorrentBuilder
from videocore.services.blacklist import AutoBlacklistPolicy
from videocore.services.federation import Federation, FederationNotifier, Notifier, OutboxFederation, get_notifier
from videocore.services.import_service import ImportResolver
from videocore.services.ingest_service import IngestCoordinator
from videocore.services.torrent_stage import TorrentStage
from videocore.services.views import (
    InMemoryLiveViewAggregator,
    LiveViewAggregator,
    ViewAccumulator,
    ViewStore,
    get_view_store,
)


@dataclass(slots=True)
class Services:
    coordinator: IngestCoordinator
    resolver: ImportResolver
    runner: BackgroundRunner
    dispatcher: JobDispatcher
    storage: Storage


def create_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    storage: Optional[Storage] = None,
    artifacts: Optional[ArtifactPipeline] = None,
    job_backend: Optional[BaseJobBackend] = None,
    torrent_builder: Optional[TorrentBuilder] = None,
    extractor: Optional[MediaExtractor] = None,
    federation: Optional[Federation] = None,
    notifier: Optional[Notifier] = None,
    view_store: Optional[ViewStore] = None,
    live_aggregator: Optional[LiveViewAggregator] = None,
) -> Services:
    storage = storage or get_storage(settings)
    federation = federation or OutboxFederation()
    runner = BackgroundRunner()
    dispatcher = JobDispatcher(job_backend or get_job_backend(settings), runner)
    artifacts = artifacts or ArtifactPipeline(settings, storage)
    blacklist = AutoBlacklistPolicy(settings)

    federation_notifier = FederationNotifier(settings, session_factory, federation, notifier or get_notifier(settings))
    torrent_stage = TorrentStage(
        settings,
        storage,
        session_factory,
        torrent_builder or TorfTorrentBuilder(settings.torrent_trackers),
    )
    views = ViewAccumulator(
        settings,
        view_store or get_view_store(settings),
        live_aggregator or InMemoryLiveViewAggregator(),
        session_factory,
        federation,
    )

    coordinator = IngestCoordinator(
        settings,
        storage,
        session_factory,
        artifacts=artifacts,
        torrent_stage=torrent_stage,
        federation_notifier=federation_notifier,
        federation=federation,
        dispatcher=dispatcher,
        views=views,
        blacklist=blacklist,
        runner=runner,
    )
    resolver = ImportResolver(
        settings,
        storage,
        session_factory,
        artifacts=artifacts,
        extractor=extractor or YtDlpExtractor(settings.extractor_user_agent),
        dispatcher=dispatcher,
        blacklist=blacklist,
    )
    return Services(coordinator=coordinator, resolver=resolver, runner=runner, dispatcher=dispatcher, storage=storage)


__all__ = ["Services", "create_services"]
