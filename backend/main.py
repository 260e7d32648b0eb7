"""
Worker process entrypoint.

Responsibilities:
- Load .env (python-dotenv), then AppConfig once
- Build shared clients ONCE per process (LLM, transcription, storage)
- Wire them into the pipeline and the job worker
- Run until SIGINT/SIGTERM

build_live_recommender() is the factory for the in-call path; the process
that serves live requests owns the returned instance.

Without Supabase credentials the worker runs against in-memory storage,
which is only useful for local development.
"""

from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from dotenv import load_dotenv

from adapters.llm.openai_json import build_llm_client
from adapters.retrieval.base import KnowledgeRetriever
from adapters.storage.base import CallStore, JobRepository
from adapters.storage.memory import InMemoryCallStore, InMemoryJobRepository
from adapters.storage.supabase import SupabaseCallStore, SupabaseJobRepository, SupabaseRestClient
from adapters.transcription.deepgram import DeepgramTranscriber
from config import AppConfig
from jobs.worker import JobWorker
from live.orchestrator import LiveRecommender
from observability.logger import log_event
from pipeline.batch import CallProcessor


@dataclass
class WorkerRuntime:
    worker: JobWorker
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for close in self.closers:
            await close()


def build_storage(config: AppConfig) -> tuple[JobRepository, CallStore, SupabaseRestClient | None]:
    if not config.storage_configured:
        return InMemoryJobRepository(), InMemoryCallStore(), None

    client = SupabaseRestClient(
        url=config.supabase_url or "",
        service_key=config.supabase_service_key or "",
    )
    return (
        SupabaseJobRepository(client),
        SupabaseCallStore(client, audio_bucket=config.audio_bucket),
        client,
    )


def build_runtime(config: AppConfig) -> WorkerRuntime:
    repo, store, rest_client = build_storage(config)

    transcriber = None
    if config.transcription_configured:
        transcriber = DeepgramTranscriber(
            api_key=config.deepgram_api_key or "",
            model=config.deepgram_model,
        )

    processor = CallProcessor(
        store=store,
        transcriber=transcriber,
        llm=build_llm_client(config),
        classifier_model=config.classifier_model,
        recommender_model=config.recommender_model,
        summary_model=config.summary_model,
    )
    runtime = WorkerRuntime(
        worker=JobWorker(repo=repo, processor=processor, worker_id=config.worker_id),
    )
    if rest_client is not None:
        runtime.closers.append(rest_client.aclose)
    if transcriber is not None:
        runtime.closers.append(transcriber.aclose)

    log_event({
        "event_type": "WORKER_CONFIGURED",
        "env": config.env,
        "worker_id": config.worker_id,
        "llm_provider": config.llm_provider if config.llm_configured else None,
        "transcription": config.transcription_configured,
        "storage": "supabase" if config.storage_configured else "memory",
    })
    return runtime


def build_live_recommender(
    config: AppConfig,
    retriever: KnowledgeRetriever | None = None,
) -> LiveRecommender:
    """In-call recommender on the fast model tier; shares nothing with the worker."""
    return LiveRecommender(
        llm=build_llm_client(config),
        model=config.live_model,
        retriever=retriever,
    )


async def main() -> None:
    config = AppConfig.load_from_env()
    runtime = build_runtime(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await runtime.worker.run(stop_event)
    finally:
        await runtime.aclose()


def run() -> None:
    load_dotenv()
    asyncio.run(main())


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

if __name__ == "__main__":
    run()
