"""Application dependency wiring."""

from __future__ import annotations

from functools import lru_cache

from redis import Redis

from package_changes.core.config import settings
from package_changes.repositories.redis_store import RedisResultStore
from package_changes.services.analysis import AnalysisRunService
from package_changes.services.analytics import AnalyticsService
from package_changes.services.diff import PackageDiffEngine
from package_changes.services.normalizer import RecordNormalizer
from package_changes.services.ranking import BasePackageRankResolver, build_rank_resolver
from package_changes.sources.record_source import RecordSource, source_from_settings
from package_changes.telemetry import EventSink, sink_from_settings


@lru_cache
def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


@lru_cache
def get_store() -> RedisResultStore:
    return RedisResultStore(get_redis_client(), key_prefix=settings.redis_key_prefix)


@lru_cache
def get_record_source() -> RecordSource:
    return source_from_settings(settings)


@lru_cache
def get_rank_resolver() -> BasePackageRankResolver:
    return build_rank_resolver(settings)


@lru_cache
def get_event_sink() -> EventSink:
    return sink_from_settings(settings)


@lru_cache
def get_analytics_service() -> AnalyticsService:
    return AnalyticsService(get_store(), sink=get_event_sink(), recent_limit=settings.recent_changes_limit)


@lru_cache
def get_analysis_service() -> AnalysisRunService:
    return AnalysisRunService(
        store=get_store(),
        source=get_record_source(),
        normalizer=RecordNormalizer(),
        diff_engine=PackageDiffEngine(
            get_rank_resolver(), suppress_repeat_transitions=settings.suppress_repeat_transitions
        ),
        analytics_service=get_analytics_service(),
        recent_limit=settings.recent_changes_limit,
        stale_after_seconds=settings.run_stale_after_seconds,
    )
