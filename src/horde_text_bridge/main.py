"""Bridge process entrypoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from collections.abc import Iterator

import uvicorn
from pydantic import ValidationError

from horde_text_bridge.api import create_status_app
from horde_text_bridge.bootstrap import BridgeApplication, build_bridge, sync_worker_info
from horde_text_bridge.config import Settings
from horde_text_bridge.domain.errors import BridgeError

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_INTERRUPTED = 130

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure the root logger once for the whole process."""

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


class InterruptHandler:
    """First interrupt stops workers gracefully; the second exits immediately."""

    def __init__(self, bridge: BridgeApplication) -> None:
        self._bridge = bridge
        self._count = 0
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def count(self) -> int:
        return self._count

    def __call__(self) -> None:
        self._count += 1
        if self._count > 1:
            logger.warning("Second interrupt received, exiting immediately.")
            logging.shutdown()
            os._exit(EXIT_INTERRUPTED)

        logger.warning("Interrupt received, finishing in-flight jobs. Interrupt again to force.")
        self._bridge.status.request_graceful_shutdown()
        self._bridge.status.set_last_error("graceful shutdown requested")
        task = asyncio.get_running_loop().create_task(
            self._bridge.runtime.request_stop("graceful shutdown requested")
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


class _StatusServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the bridge."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        return None


def _install_interrupt_handler(handler: InterruptHandler) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, handler)
        loop.add_signal_handler(signal.SIGTERM, handler)
    except NotImplementedError:
        signal.signal(signal.SIGINT, lambda *_: loop.call_soon_threadsafe(handler))


async def run_bridge(bridge: BridgeApplication, *, handle_signals: bool = True) -> int:
    """Probe the backend, then run every worker until the pool stops."""

    settings = bridge.settings
    status_server: _StatusServer | None = None
    status_task: asyncio.Task[None] | None = None
    try:
        if not await bridge.backend.check_health(force=True):
            logger.error(
                "Inference backend at %s is not healthy (%s).",
                bridge.backend.base_url,
                bridge.backend.last_health_error or "unknown error",
            )
            return EXIT_STARTUP_FAILURE

        await sync_worker_info(bridge)

        if handle_signals:
            _install_interrupt_handler(InterruptHandler(bridge))

        if settings.status_api_enabled:
            status_server = _StatusServer(
                uvicorn.Config(
                    create_status_app(bridge.status),
                    host=settings.status_api_host,
                    port=settings.status_api_port,
                    log_level=settings.log_level.lower(),
                )
            )
            status_task = asyncio.create_task(status_server.serve())
            logger.info(
                "Status API listening on http://%s:%s.",
                settings.status_api_host,
                settings.status_api_port,
            )

        await bridge.pool.run()
        return EXIT_OK
    finally:
        if status_server is not None and status_task is not None:
            status_server.should_exit = True
            await status_task
        await bridge.close()


def run() -> None:
    """Run the bridge until shutdown."""

    configure_logging()
    try:
        settings = Settings()
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        raise SystemExit(EXIT_STARTUP_FAILURE) from None

    configure_logging(settings.log_level, settings.log_file)
    try:
        bridge = build_bridge(settings)
    except (BridgeError, ValueError) as exc:
        logger.error("Failed to start bridge: %s", exc)
        raise SystemExit(EXIT_STARTUP_FAILURE) from None

    sys.exit(asyncio.run(run_bridge(bridge)))


__all__ = ["InterruptHandler", "configure_logging", "run", "run_bridge"]
