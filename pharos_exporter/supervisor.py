"""Runs both engines and the metrics listener under one lifetime.

The first engine to fail cancels everything else and its exception is
re-raised from run(). A set stop event (SIGINT/SIGTERM) shuts down cleanly.
"""

import asyncio
import logging

from prometheus_client import REGISTRY, CollectorRegistry, start_http_server

from pharos_exporter.chain_poller import ChainPoller
from pharos_exporter.log_follower import LogFollower

log = logging.getLogger("pharos_exporter.supervisor")

DEFAULT_SHUTDOWN_GRACE = 5.0


class Supervisor:

    def __init__(self, poller: ChainPoller, follower: LogFollower,
                 metrics_port: int | None = None, metrics_addr: str = "0.0.0.0",
                 registry: CollectorRegistry | None = None,
                 shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE):
        self.poller = poller
        self.follower = follower
        self.metrics_port = metrics_port
        self.metrics_addr = metrics_addr
        self.registry = registry if registry is not None else REGISTRY
        self.shutdown_grace = shutdown_grace
        self._httpd = None
        self._http_thread = None

    # ── Metrics listener ─────────────────────────────────────────────────

    def start_metrics_server(self):
        if self.metrics_port is None:
            return
        log.info("Starting Prometheus metrics server on port %d", self.metrics_port)
        self._httpd, self._http_thread = start_http_server(
            self.metrics_port, addr=self.metrics_addr, registry=self.registry,
        )

    async def stop_metrics_server(self):
        if self._httpd is None:
            return
        httpd, self._httpd = self._httpd, None
        try:
            await asyncio.wait_for(asyncio.to_thread(httpd.shutdown), self.shutdown_grace)
        except asyncio.TimeoutError:
            log.warning("Metrics server did not stop within %.1fs, closing it", self.shutdown_grace)
        finally:
            httpd.server_close()
        log.info("Metrics server stopped")

    # ── Lifetime ─────────────────────────────────────────────────────────

    async def run(self, stop_event: asyncio.Event | None = None):
        if stop_event is None:
            stop_event = asyncio.Event()

        self.start_metrics_server()
        engines = [
            asyncio.create_task(self.poller.run(), name="chain_poller"),
            asyncio.create_task(self.follower.run(), name="log_follower"),
        ]
        stopper = asyncio.create_task(stop_event.wait(), name="stop")
        first_error = None

        try:
            done, _ = await asyncio.wait(engines + [stopper],
                                         return_when=asyncio.FIRST_COMPLETED)
            for task in engines:
                if task not in done or task.cancelled():
                    continue
                exc = task.exception()
                if exc is None:
                    log.warning("%s exited", task.get_name())
                elif first_error is None:
                    first_error = exc
                    log.error("%s failed: %s", task.get_name(), exc)
            if stopper in done:
                log.info("Shutdown requested")
        finally:
            for task in engines + [stopper]:
                task.cancel()
            results = await asyncio.gather(*engines, stopper, return_exceptions=True)
            for task, result in zip(engines, results):
                if isinstance(result, Exception) and result is not first_error:
                    log.warning("%s failed during shutdown: %s", task.get_name(), result)
            await self.stop_metrics_server()

        if first_error is not None:
            raise first_error
