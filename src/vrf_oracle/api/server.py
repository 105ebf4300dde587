# src/vrf_oracle/api/server.py
from __future__ import annotations

import logging
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI

from vrf_oracle.structured_logging import log_event

log = logging.getLogger("vrf_oracle.api")


class StatusServer:
    """Runs the status app under uvicorn on a daemon thread."""

    def __init__(self, app: FastAPI, *, host: str, port: int) -> None:
        self.host = str(host)
        self.port = int(port)
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=self.host, port=self.port, log_level="warning", access_log=False)
        )
        self._t: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._t is not None:
            return
        self._t = threading.Thread(target=self._server.run, name="vrf-oracle-status", daemon=True)
        self._t.start()
        log_event(log, "status_server_started", host=self.host, port=self.port)

    def stop(self, join_timeout: float = 5.0) -> None:
        self._server.should_exit = True
        t = self._t
        if t is not None:
            t.join(timeout=join_timeout)
