"""Periodic polling of enabled metrics through the correlator."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from watsctl.core.correlator import Correlator
from watsctl.core.errors import DisconnectedError, ResponseTimeoutError, TransportError
from watsctl.core.model import MetricDescriptor, PollingJob, TextFrame

LOGGER = logging.getLogger(__name__)

ResponseHandler = Callable[[MetricDescriptor, str], None]
TransportErrorHandler = Callable[[TransportError], None]


class PollingScheduler:
    def __init__(
        self,
        correlator: Correlator,
        *,
        interval_s: float = 1.0,
        on_response: ResponseHandler,
        on_transport_error: TransportErrorHandler | None = None,
    ) -> None:
        self._correlator = correlator
        self.interval_s = interval_s
        self._on_response = on_response
        self._on_transport_error = on_transport_error
        self._jobs: dict[str, PollingJob] = {}

    @property
    def active(self) -> tuple[str, ...]:
        return tuple(self._jobs)

    def enable(self, metric: MetricDescriptor) -> PollingJob:
        job = self._jobs.get(metric.name)
        if job is not None:
            return job
        job = PollingJob(metric=metric, interval_s=self.interval_s)
        job.task = asyncio.create_task(self._run(job), name=f"watsctl-poll-{metric.code}")
        self._jobs[metric.name] = job
        LOGGER.info("polling %s (%s) every %gs", metric.name, metric.code, job.interval_s)
        return job

    def disable(self, name: str) -> bool:
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        if job.task is not None:
            job.task.cancel()
        LOGGER.info("stopped polling %s", name)
        return True

    def stop_all(self) -> None:
        for name in list(self._jobs):
            self.disable(name)

    async def _run(self, job: PollingJob) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while await self._tick(job):
            next_tick += job.interval_s
            now = loop.time()
            if next_tick < now:
                missed = int((now - next_tick) // job.interval_s) + 1
                LOGGER.debug("%s: skipping %d overrun tick(s)", job.metric.name, missed)
                next_tick += missed * job.interval_s
            await asyncio.sleep(next_tick - now)
        if self._jobs.get(job.metric.name) is job:
            del self._jobs[job.metric.name]

    async def _tick(self, job: PollingJob) -> bool:
        try:
            frame = await self._correlator.send(job.code)
        except ResponseTimeoutError as exc:
            LOGGER.info("%s: %s; retrying next tick", job.metric.name, exc)
            return True
        except DisconnectedError:
            LOGGER.debug("%s: session ended, stopping", job.metric.name)
            return False
        except TransportError as exc:
            LOGGER.error("%s: transport failure: %s", job.metric.name, exc)
            if self._on_transport_error is not None:
                self._on_transport_error(exc)
            return False

        if isinstance(frame, TextFrame):
            self._on_response(job.metric, frame.text)
        return True
