"""Telemetry sinks shipped with watsctl."""

from __future__ import annotations

import logging

LOGGER = logging.getLogger(__name__)


class LoggingSink:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def publish(self, payload: str) -> None:
        self._logger.info("telemetry %s", payload)
