"""
Service wiring

Builds the Supabase client once and hands it to every component. The API
creates services at startup and closes them at shutdown; the worker process
does the same around its poll loop.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from supabase import Client, create_client

from sticker_app.config import Settings
from sticker_app.generation import ImageGenerationClient
from sticker_app.jobs.job_manager import JobManager
from sticker_app.jobs.job_store import JobStore
from sticker_app.jobs.progress import ProgressAggregator
from sticker_app.jobs.runner import QueueRunner
from sticker_app.jobs.task_queue import TaskQueue
from sticker_app.storage import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    supabase: Client
    store: JobStore
    queue: TaskQueue
    artifacts: ArtifactStore
    generator: ImageGenerationClient
    progress: ProgressAggregator
    manager: JobManager
    runner: QueueRunner

    def close(self) -> None:
        self.generator.close()


def build_services(
    settings: Settings,
    supabase: Client,
    generator: Optional[ImageGenerationClient] = None
) -> Services:
    """Assemble all components around an existing Supabase client."""
    store = JobStore(supabase)
    queue = TaskQueue(supabase, settings.queue_name)
    artifacts = ArtifactStore(supabase, settings.bucket)
    generator = generator or ImageGenerationClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        model=settings.openai_image_model,
        size=settings.openai_image_size,
        timeout=settings.generation_timeout_seconds,
    )
    progress = ProgressAggregator(store)
    return Services(
        settings=settings,
        supabase=supabase,
        store=store,
        queue=queue,
        artifacts=artifacts,
        generator=generator,
        progress=progress,
        manager=JobManager(store, queue, artifacts),
        runner=QueueRunner(store, queue, artifacts, generator, progress),
    )


def create_services(settings: Settings) -> Services:
    """Connect to Supabase and build services. Ensures the sticker bucket exists."""
    settings.require_supabase()
    supabase = create_client(settings.supabase_url, settings.supabase_key)
    services = build_services(settings, supabase)
    services.artifacts.ensure_bucket()
    logger.info(f"Services ready (queue={settings.queue_name}, bucket={settings.bucket})")
    return services
