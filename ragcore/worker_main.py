"""
Standalone worker process: polls the job queue until interrupted.

    ragcore-worker --workers 2
    ragcore-worker --drain          # process what is pending, then exit
"""
import argparse
import logging
import signal
import threading

from ragcore.config.settings import settings
from ragcore.core.pipeline.worker import default_worker_id, start_workers
from ragcore.services import build_services

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Document processing worker")
    parser.add_argument("--workers", type=int, default=settings.jobs.worker_count,
                        help="number of worker threads")
    parser.add_argument("--drain", action="store_true",
                        help="recover stuck jobs, process pending jobs once and exit")
    parser.add_argument("--max-jobs", type=int, default=None,
                        help="upper bound on jobs processed with --drain")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(level=settings.logging.level, format=settings.logging.format)
    args = parse_args(argv)
    services = build_services(settings)

    availability = services.provider.check_availability()
    if not availability.get("available"):
        logger.warning(f"Embedding provider is not reachable yet: {availability.get('error')}")

    try:
        if args.drain:
            recovered = services.worker.recover_stuck()
            processed = services.worker.drain(args.max_jobs)
            logger.info(f"Drain finished: {processed} processed, {len(recovered)} recovered")
            return 0

        stop_event = threading.Event()

        def _stop(signum, frame):
            logger.info(f"Received signal {signum}, stopping workers...")
            stop_event.set()

        signal.signal(signal.SIGINT, _stop)
        signal.signal(signal.SIGTERM, _stop)

        threads = start_workers(lambda i: services.new_worker(f"{default_worker_id()}-{i}"),
                                max(1, args.workers), stop_event)
        logger.info(f"Started {len(threads)} worker thread(s)")
        while any(t.is_alive() for t in threads):
            for t in threads:
                t.join(timeout=1.0)
        return 0
    finally:
        services.close()


if __name__ == "__main__":
    raise SystemExit(main())
