"""Application bootstrap/wiring."""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from horde_text_bridge.application.services import (
    JobCycle,
    ModerationService,
    TokenCounter,
    WorkerPool,
    WorkerProfile,
)
from horde_text_bridge.config import Settings
from horde_text_bridge.domain.errors import HordeClientError
from horde_text_bridge.domain.moderation import ModerationMode
from horde_text_bridge.domain.ports import SleepFunction
from horde_text_bridge.domain.runtime import RuntimeState
from horde_text_bridge.infrastructure.audit import FileAuditLog
from horde_text_bridge.infrastructure.backends import BackendClient, build_backend_adapter
from horde_text_bridge.infrastructure.horde import HordeClient
from horde_text_bridge.infrastructure.moderation import OpenAiModerationClient
from horde_text_bridge.infrastructure.runtime import StaggeredPollScheduler, TokenRateThrottle
from horde_text_bridge.infrastructure.status import InMemoryStatusBoard

_WORKER_INFO_MAX_LENGTH = 500

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BridgeApplication:
    """Composed service graph for one bridge process."""

    settings: Settings
    runtime: RuntimeState
    status: InMemoryStatusBoard
    horde: HordeClient
    backend: BackendClient
    moderation_client: OpenAiModerationClient | None
    pool: WorkerPool

    async def close(self) -> None:
        """Release HTTP resources of every remote party."""

        await self.horde.close()
        await self.backend.close()
        if self.moderation_client is not None:
            await self.moderation_client.close()


@dataclass(slots=True, frozen=True)
class Transports:
    """Optional HTTP transports, one per remote party."""

    horde: httpx.AsyncBaseTransport | None = None
    backend: httpx.AsyncBaseTransport | None = None
    moderation: httpx.AsyncBaseTransport | None = None


def _build_profile(settings: Settings) -> WorkerProfile:
    return WorkerProfile(
        worker_name=settings.worker_name,
        model=str(settings.model),
        max_length=settings.max_length,
        max_context_length=int(settings.ctx or 0),
        bridge_agent=settings.bridge_agent,
        nsfw=settings.nsfw,
        priority_usernames=tuple(settings.priority_usernames),
        threads=settings.threads,
        enforce_ctx_limit=settings.enforce_ctx_limit,
        server_model=settings.server_model,
        positive_action=settings.moderation_positive_action,
        blocked_response=settings.moderation_blocked_response,
        moderation_metadata_ref=settings.moderation_metadata_ref,
        refresh_seconds=settings.refresh_time_seconds,
        submit_retry_seconds=settings.submit_retry_seconds,
    )


def _build_backend_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None,
) -> BackendClient:
    if settings.server_engine is None:
        raise ValueError("HORDE_BRIDGE_SERVER_ENGINE is required.")
    return BackendClient(
        base_url=settings.server_url,
        adapter=build_backend_adapter(settings.server_engine),
        api_key=settings.server_api_key,
        timeout_seconds=settings.timeout_seconds,
        health_cache_seconds=settings.health_cache_seconds,
        transport=transport,
    )


def _build_moderation_client(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None,
) -> OpenAiModerationClient | None:
    if settings.moderation_mode != ModerationMode.REMOTE:
        return None
    if not settings.openai_api_key:
        raise ValueError(
            "HORDE_BRIDGE_OPENAI_API_KEY is required when HORDE_BRIDGE_MODERATION_MODE=remote."
        )
    return OpenAiModerationClient(api_key=settings.openai_api_key, transport=transport)


def build_bridge(
    settings: Settings,
    *,
    transports: Transports | None = None,
    sleep: SleepFunction = asyncio.sleep,
) -> BridgeApplication:
    """Compose service graph."""

    transports = transports or Transports()
    runtime = RuntimeState(max_failed_requests=settings.max_failed_requests)
    status = InMemoryStatusBoard(worker_name=settings.worker_name)
    horde = HordeClient(
        base_url=settings.cluster_url,
        api_key=settings.api_key,
        timeout_seconds=settings.timeout_seconds,
        transport=transports.horde,
    )
    backend = _build_backend_client(settings, transports.backend)
    moderation_client = _build_moderation_client(settings, transports.moderation)
    token_counter = TokenCounter(backend)

    cycle = JobCycle(
        profile=_build_profile(settings),
        queue=horde,
        backend=backend,
        moderation=ModerationService(
            settings.moderation_mode,
            token_counter,
            moderation_client,
            remote_max_tokens=settings.openai_moderation_max_tokens,
            status=status,
        ),
        token_counter=token_counter,
        throttle=TokenRateThrottle(settings.max_tps, sleep=sleep),
        scheduler=StaggeredPollScheduler(
            refresh_seconds=settings.refresh_time_seconds,
            worker_count=settings.threads,
            epoch=runtime.poll_epoch,
            enabled=settings.thread_poll_stagger,
            sleep=sleep,
        ),
        status=status,
        audit=FileAuditLog(
            prompt_log_file=settings.prompt_log_file,
            moderation_log_file=settings.moderation_audit_log_file,
        ),
        sleep=sleep,
    )
    pool = WorkerPool(cycle, runtime, status, worker_count=settings.threads)

    logger.info(
        "Bridge configured for %s via %s backend at %s with %s worker(s).",
        settings.model,
        backend.adapter.name,
        backend.base_url,
        settings.threads,
    )
    return BridgeApplication(
        settings=settings,
        runtime=runtime,
        status=status,
        horde=horde,
        backend=backend,
        moderation_client=moderation_client,
        pool=pool,
    )


async def sync_worker_info(bridge: BridgeApplication) -> bool:
    """Publish the configured worker description and verify it by reading it back.

    Returns whether the description now matches. Failures only warn.
    """

    settings = bridge.settings
    if not settings.worker_id or not settings.worker_info:
        return False

    info = settings.worker_info[:_WORKER_INFO_MAX_LENGTH]
    try:
        await bridge.horde.update_worker_info(settings.worker_id, info)
        worker = await bridge.horde.get_worker(settings.worker_id)
    except HordeClientError as exc:
        logger.warning("Failed to update worker info for '%s': %s", settings.worker_id, exc)
        return False

    if worker.get("info") != info:
        logger.warning(
            "Worker info for '%s' was not applied (server returned %r).",
            settings.worker_id,
            worker.get("info"),
        )
        return False

    logger.info("Updated worker info for '%s'.", settings.worker_id)
    return True


__all__ = ["BridgeApplication", "Transports", "build_bridge", "sync_worker_info"]
