import argparse
import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from gigdispatch.infra.db import dispose_engine, get_session_factory
from gigdispatch.infra.logging import clear_log_context, configure_logging
from gigdispatch.infra.metrics import configure_metrics, metrics
from gigdispatch.infra.redis import close_redis_client
from gigdispatch.jobs import outbox
from gigdispatch.services import AppServices, build_app_services
from gigdispatch.settings import settings

logger = logging.getLogger(__name__)

JOB_NAMES = ("outbox-delivery",)


async def _run_job(
    name: str,
    session_factory: async_sessionmaker,
    runner: Callable[[object], Awaitable[dict[str, int]]],
) -> dict[str, int]:
    try:
        async with session_factory() as session:
            result = await runner(session)
        logger.info("job_complete", extra={"extra": {"job": name, **result}})
        return result
    finally:
        clear_log_context()


def _job_runner(name: str, services: AppServices) -> Callable:
    if name == "outbox-delivery":
        return lambda session: outbox.run_outbox_delivery(session, services.followups, detached=True)
    raise ValueError(f"unknown_job:{name}")


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run scheduled jobs")
    parser.add_argument("--job", action="append", dest="jobs", choices=JOB_NAMES, help="Job name to run")
    parser.add_argument("--interval", type=int, default=60, help="Seconds between loops when not using --once")
    parser.add_argument("--once", action="store_true", help="Run jobs once and exit")
    args = parser.parse_args(argv)

    configure_logging()
    metrics_client = configure_metrics(settings.metrics_enabled)
    session_factory = get_session_factory()
    # follow-ups replayed here run inline so the batch commits after they finish
    services = build_app_services(
        settings, metrics=metrics_client, session_factory=session_factory, followup_mode="inline"
    )

    job_names = args.jobs or list(JOB_NAMES)
    runners = [_job_runner(name, services) for name in job_names]

    try:
        while True:
            for name, runner in zip(job_names, runners):
                try:
                    await _run_job(name, session_factory, runner)
                except Exception as exc:  # noqa: BLE001
                    metrics.record_job_error(name, type(exc).__name__)
                    logger.warning("job_failed", extra={"extra": {"job": name, "reason": type(exc).__name__}})
            if args.once:
                break
            await asyncio.sleep(max(args.interval, 1))
    finally:
        await close_redis_client()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
