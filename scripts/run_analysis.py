"""Run one package change analysis over a provisioning export and print the run summary."""

from __future__ import annotations

import argparse
import json
import sys

from redis import Redis

from package_changes.core.config import settings
from package_changes.core.errors import AnalysisAlreadyRunningError
from package_changes.core.logging import configure_logging
from package_changes.repositories.redis_store import RedisResultStore
from package_changes.services.analysis import AnalysisRunService
from package_changes.services.analytics import AnalyticsService
from package_changes.services.diff import PackageDiffEngine
from package_changes.services.normalizer import RecordNormalizer
from package_changes.services.ranking import build_rank_resolver
from package_changes.sources.record_source import FileRecordSource
from package_changes.telemetry import sink_from_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect package upgrades and downgrades in a provisioning export")
    parser.add_argument(
        "--input",
        default=settings.record_source_path,
        help=f"JSON array or JSON-lines export of provisioning records (default: {settings.record_source_path})",
    )
    parser.add_argument("--redis-url", default=settings.redis_url, help="Redis URL for the result store")
    parser.add_argument("--since-sequence", type=int, default=None, help="Only analyze records after this sequence")
    parser.add_argument(
        "--deployment",
        action="append",
        default=[],
        dest="deployments",
        help="Restrict the run to a deployment (repeatable)",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    return parser


def main(argv: list[str] | None = None, redis_client: Redis | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    store = RedisResultStore(
        redis_client or Redis.from_url(args.redis_url, decode_responses=True),
        key_prefix=settings.redis_key_prefix,
    )
    sink = sink_from_settings(settings)
    service = AnalysisRunService(
        store=store,
        source=FileRecordSource(args.input),
        normalizer=RecordNormalizer(),
        diff_engine=PackageDiffEngine(
            build_rank_resolver(settings), suppress_repeat_transitions=settings.suppress_repeat_transitions
        ),
        analytics_service=AnalyticsService(store, sink=sink, recent_limit=settings.recent_changes_limit),
        recent_limit=settings.recent_changes_limit,
        stale_after_seconds=settings.run_stale_after_seconds,
    )
    try:
        run = service.start_run(since_sequence=args.since_sequence, deployment_filter=args.deployments)
    except AnalysisAlreadyRunningError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    finally:
        sink.close()
    print(json.dumps(run.model_dump(mode="json"), indent=2))
    return 0 if run.status.value == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
