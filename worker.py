#!/usr/bin/env python3
"""
Sticker Pack Queue Worker

A dedicated worker process that repeatedly drains the sticker task queue.
Run as a separate service alongside (or instead of) a cron trigger that
calls the drain endpoint.

Usage:
    python worker.py [--concurrency=N] [--poll-interval=S] [--batch-size=N]
                     [--visibility-timeout=S] [--max-attempts=N] [--once]

Features:
- Runs N independent drains in parallel; coordination happens only through
  the queue leases and the job tables
- Polls again immediately while batches come back full
- Graceful shutdown on signals
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("sticker_pack.worker")

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sticker_app.config import Settings
from sticker_app.jobs.job_types import DrainRequest, DrainResult
from sticker_app.services import Services, create_services


class StickerQueueWorker:
    """
    Worker that polls the queue and drains sticker tasks.
    """

    def __init__(
        self,
        services: Services,
        worker_id: Optional[str] = None,
        concurrency: int = 1,
        poll_interval: float = 5.0,
        batch_size: int = 5,
        visibility_timeout: int = 60,
        max_attempts: int = 5
    ):
        self.worker_id = worker_id or f"worker-{os.getpid()}-{datetime.now(timezone.utc).strftime('%H%M%S')}"
        self.services = services
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.params = DrainRequest(
            batch_size=batch_size,
            visibility_timeout_seconds=visibility_timeout,
            max_attempts=max_attempts,
        )

        self._running = False
        self._shutdown_event = asyncio.Event()
        self.totals = DrainResult()

        logger.info(
            f"Worker {self.worker_id} initialized with concurrency={self.concurrency}, "
            f"batch_size={self.params.batch_size}, "
            f"visibility_timeout={self.params.visibility_timeout_seconds}s, "
            f"max_attempts={self.params.max_attempts}"
        )

    async def start(self):
        """Start the worker and drain until shutdown."""
        self._running = True
        logger.info(f"Worker {self.worker_id} starting...")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        try:
            await asyncio.gather(*(self._drain_loop(slot) for slot in range(self.concurrency)))
        except asyncio.CancelledError:
            logger.info("Worker cancelled")
        finally:
            logger.info(
                f"Worker {self.worker_id} totals: leased={self.totals.leased} "
                f"succeeded={self.totals.succeeded} failed={self.totals.failed}"
            )

    def _handle_shutdown(self):
        """Handle shutdown signal."""
        logger.info(f"Worker {self.worker_id} received shutdown signal")
        self._running = False
        self._shutdown_event.set()

    async def run_once(self) -> DrainResult:
        """Run a single drain and return its counts."""
        result = await asyncio.to_thread(
            self.services.runner.drain,
            self.params.batch_size,
            self.params.visibility_timeout_seconds,
            self.params.max_attempts,
        )
        self._add_totals(result)
        return result

    def _add_totals(self, result: DrainResult):
        self.totals.leased += result.leased
        self.totals.succeeded += result.succeeded
        self.totals.failed += result.failed

    async def _drain_loop(self, slot: int):
        """Poll loop for one drain slot."""
        logger.info(f"Starting drain loop {slot}")

        while self._running:
            result = None
            try:
                result = await self.run_once()
            except Exception as e:
                logger.error(f"Error in drain loop {slot}: {e}")

            # A full batch means more work is probably waiting
            if result is not None and result.leased >= self.params.batch_size:
                continue

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.poll_interval
                )
                break
            except asyncio.TimeoutError:
                pass

        logger.info(f"Drain loop {slot} stopped")


def main():
    """Main entry point for the worker."""
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Sticker Pack Queue Worker")
    parser.add_argument(
        "--concurrency", "-c",
        type=int,
        default=settings.worker_concurrency,
        help="Number of drains to run in parallel (default: 1)"
    )
    parser.add_argument(
        "--poll-interval", "-p",
        type=float,
        default=settings.worker_poll_interval,
        help="Seconds between queue polls when idle (default: 5.0)"
    )
    parser.add_argument(
        "--batch-size", "-b",
        type=int,
        default=settings.worker_batch_size,
        help="Messages leased per drain, 1-25 (default: 5)"
    )
    parser.add_argument(
        "--visibility-timeout",
        type=int,
        default=settings.worker_visibility_timeout,
        help="Lease duration in seconds, 10-600 (default: 60)"
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=settings.worker_max_attempts,
        help="Attempts per sticker before it is marked as error, 1-10 (default: 5)"
    )
    parser.add_argument(
        "--worker-id",
        type=str,
        default=os.environ.get("WORKER_ID"),
        help="Unique worker identifier (default: auto-generated)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single drain and exit"
    )

    args = parser.parse_args()

    try:
        services = create_services(settings)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    worker = StickerQueueWorker(
        services,
        worker_id=args.worker_id,
        concurrency=args.concurrency,
        poll_interval=args.poll_interval,
        batch_size=args.batch_size,
        visibility_timeout=args.visibility_timeout,
        max_attempts=args.max_attempts
    )

    try:
        if args.once:
            result = asyncio.run(worker.run_once())
            logger.info(f"Drain finished: {result.model_dump()}")
        else:
            asyncio.run(worker.start())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    finally:
        services.close()

    logger.info("Worker stopped")


if __name__ == "__main__":
    main()
