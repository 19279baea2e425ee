"""Wiring of registry, stores, engines and runner into one pipeline object."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from sqlalchemy import Engine

from land_importer.core.config import Settings, get_settings
from land_importer.db.base import Base
from land_importer.db.session import create_db_engine, create_session_factory
from land_importer.services.cancellation import (
    CancellationSignals,
    InMemoryCancellationSignals,
    RedisCancellationSignals,
)
from land_importer.services.events import (
    CompositeEventSink,
    EventSink,
    LoggingEventSink,
    RedisProgressSink,
    WebhookEventSink,
)
from land_importer.services.intake import IntakeService
from land_importer.services.jobs import JobService
from land_importer.services.processing import ProcessingEngine
from land_importer.services.progress_tracker import ProgressTracker
from land_importer.services.record_sink import InMemoryRecordSink, RecordSink, SqlRecordSink
from land_importer.services.registry import InMemoryJobRegistry, JobRegistry, SqlJobRegistry
from land_importer.services.rule_store import (
    InMemoryRuleStore,
    RuleStore,
    SqlRuleStore,
    default_configuration,
)
from land_importer.services.rules_admin import RulesAdmin
from land_importer.services.runner import (
    CeleryJobRunner,
    JobRunner,
    RunFn,
    ThreadPoolJobRunner,
)
from land_importer.services.transforms import CustomTransform
from land_importer.services.validation import CustomPredicate, ValidationEngine
from land_importer.storage.file_storage import FileStorage, LocalFileStorage, RedisFileStorage
from land_importer.utils.redis_client import create_redis_client
from land_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

RunnerFactory = Callable[[RunFn], JobRunner]


@dataclass
class ImportPipeline:
    registry: JobRegistry
    store: RuleStore
    storage: FileStorage
    sink: RecordSink
    events: EventSink
    signals: CancellationSignals
    runner: JobRunner
    intake: IntakeService
    validation: ValidationEngine
    processing: ProcessingEngine
    jobs: JobService
    rules: RulesAdmin
    engine: Engine | None = None

    def close(self) -> None:
        self.runner.shutdown(wait=False)
        if self.engine is not None:
            self.engine.dispose()


def assemble_pipeline(
    *,
    registry: JobRegistry,
    store: RuleStore,
    storage: FileStorage,
    sink: RecordSink,
    events: EventSink,
    signals: CancellationSignals,
    runner_factory: RunnerFactory,
    custom_predicates: dict[str, CustomPredicate] | None = None,
    custom_transforms: dict[str, CustomTransform] | None = None,
    discard_partial_on_cancel: bool = False,
    engine: Engine | None = None,
) -> ImportPipeline:
    predicates = custom_predicates if custom_predicates is not None else {}
    transforms = custom_transforms if custom_transforms is not None else {}
    processing = ProcessingEngine(
        registry,
        storage,
        sink,
        events,
        signals,
        custom_transforms=transforms,
        discard_partial_on_cancel=discard_partial_on_cancel,
    )
    runner = runner_factory(processing.run)
    return ImportPipeline(
        registry=registry,
        store=store,
        storage=storage,
        sink=sink,
        events=events,
        signals=signals,
        runner=runner,
        intake=IntakeService(registry, store, storage, events),
        validation=ValidationEngine(registry, storage, events, custom_predicates=predicates),
        processing=processing,
        jobs=JobService(registry, storage, sink, events, signals, runner),
        rules=RulesAdmin(store, custom_predicates=predicates, custom_transforms=transforms),
        engine=engine,
    )


def build_event_sink(settings: Settings) -> EventSink:
    sinks: list[EventSink] = [LoggingEventSink()]
    if settings.redis_progress_enabled:
        client = create_redis_client(settings.redis_url, decode_responses=True)
        sinks.append(RedisProgressSink(ProgressTracker(client)))
    if settings.webhook_url:
        sinks.append(
            WebhookEventSink(
                settings.webhook_url,
                secret=settings.webhook_secret,
                async_dispatch=settings.webhook_async,
            )
        )
    return CompositeEventSink(sinks)


def build_pipeline(settings: Settings | None = None) -> ImportPipeline:
    """Create a pipeline from settings: backends, event sinks and runner."""
    settings = settings or get_settings()
    configuration = default_configuration(
        max_file_size=settings.default_max_file_size,
        batch_size=settings.default_batch_size,
        retry_attempts=settings.default_retry_attempts,
        timeout_minutes=settings.default_timeout_minutes,
    )

    engine = None
    if settings.registry_backend == "sql":
        engine = create_db_engine(settings.database_url)
        Base.metadata.create_all(engine)
        session_factory = create_session_factory(engine)
        registry: JobRegistry = SqlJobRegistry(session_factory)
        store: RuleStore = SqlRuleStore(session_factory)
        store.seed_defaults(configuration)
        sink: RecordSink = SqlRecordSink(session_factory)
    else:
        registry = InMemoryJobRegistry()
        store = InMemoryRuleStore(configuration=configuration)
        sink = InMemoryRecordSink()

    if settings.storage_backend == "redis":
        storage: FileStorage = RedisFileStorage(
            create_redis_client(settings.redis_url, decode_responses=False),
            ttl_seconds=settings.retention_days * 24 * 3600,
        )
    else:
        storage = LocalFileStorage(settings.uploads_dir)

    if settings.runner_backend == "celery" or settings.storage_backend == "redis":
        signals: CancellationSignals = RedisCancellationSignals(
            create_redis_client(settings.redis_url, decode_responses=True)
        )
    else:
        signals = InMemoryCancellationSignals()

    if settings.runner_backend == "celery":
        runner_factory: RunnerFactory = lambda run: CeleryJobRunner(celery_app)
    else:
        runner_factory = lambda run: ThreadPoolJobRunner(run, max_workers=settings.max_concurrent_jobs)

    logger.info(
        f"Pipeline backends: registry={settings.registry_backend}, storage={settings.storage_backend}, "
        f"runner={settings.runner_backend} (max {settings.max_concurrent_jobs} concurrent job(s))"
    )
    return assemble_pipeline(
        registry=registry,
        store=store,
        storage=storage,
        sink=sink,
        events=build_event_sink(settings),
        signals=signals,
        runner_factory=runner_factory,
        discard_partial_on_cancel=settings.discard_partial_on_cancel,
        engine=engine,
    )


@lru_cache
def get_worker_pipeline() -> ImportPipeline:
    """Pipeline shared by every task executed in a Celery worker process."""
    return build_pipeline(get_settings())
