"""Routes each query to the persistent worker or to a one-shot engine run.

With a worker configured, every request goes through the single
WorkerConnection under a lock.  A failed exchange closes that connection,
starts a replacement and re-raises the original error; the failed request
is not retried.  Without a worker configured, every request spawns a fresh
engine process (see ``engine.oneshot``).
"""
from __future__ import annotations

import logging
import subprocess
import threading
import time
from typing import Any, Callable, Dict, Optional

from .. import metrics
from ..config import ExplorerConfig
from . import oneshot
from .connection import WorkerConnection
from .errors import EngineError, ExecutionError, QueryValidationError, SpawnError

log = logging.getLogger(__name__)


class Dispatcher:
    """Owns the optional worker connection for one server."""

    def __init__(self, config: ExplorerConfig,
                 starter: Optional[Callable[[], WorkerConnection]] = None,
                 run_once: Optional[Callable[..., str]] = None):
        self._config = config
        self._starter = starter or self._spawn_worker
        self._run_once = run_once or oneshot.execute_once
        self._lock = threading.Lock()
        self._connection: Optional[WorkerConnection] = None

    @property
    def mode(self) -> str:
        return 'worker' if self._config.use_worker else self._config.oneshot_mode

    def _spawn_worker(self) -> WorkerConnection:
        return WorkerConnection.start(self._config.engine_base_command,
                                      max_response_bytes=self._config.max_response_bytes)

    def _set_connection(self, conn: Optional[WorkerConnection]):
        self._connection = conn
        metrics.set_level('worker_alive', 1.0 if conn is not None else 0.0)

    def start(self):
        """Start the persistent worker if one is configured.

        SpawnError propagates: a server configured for worker mode does not
        come up without one.
        """
        if not self._config.use_worker:
            log.info('no persistent worker configured; using %s one-shot mode', self.mode)
            return
        with self._lock:
            if self._connection is None:
                self._set_connection(self._starter())

    def close(self):
        with self._lock:
            conn = self._connection
            self._set_connection(None)
        if conn is not None:
            self._close_quietly(conn)

    def _close_quietly(self, conn: WorkerConnection):
        try:
            conn.close(timeout=self._config.close_timeout)
        except (OSError, subprocess.SubprocessError) as e:
            log.warning('error closing engine worker: %s', e)

    def health(self) -> Dict[str, Any]:
        conn = self._connection
        return {
            'mode': self.mode,
            'worker_configured': self._config.use_worker,
            'worker_alive': conn is not None and conn.alive(),
            'worker_pid': conn.pid if conn is not None else None,
        }

    def execute(self, query: str, environment: str) -> str:
        if not query or not environment:
            raise QueryValidationError('query and environment must not be empty')

        mode = self.mode
        start = time.monotonic()
        try:
            if self._config.use_worker:
                result = self._execute_worker(query, environment)
            else:
                result = self._execute_once(query, environment)
        except EngineError:
            metrics.count('engine_executions_total', mode=mode, status='error')
            raise
        elapsed = time.monotonic() - start
        metrics.count('engine_executions_total', mode=mode, status='ok')
        metrics.record_duration('engine_execution_seconds', elapsed, mode=mode)
        log.info('executed query in %.3fs (%s)', elapsed, mode)
        return result

    def _execute_once(self, query: str, environment: str) -> str:
        try:
            return self._run_once(environment, query,
                                  engine_command=self._config.engine_base_command,
                                  classpath=self._config.classpath,
                                  launcher=self._config.launcher)
        except OSError as e:
            # temporary file could not be written
            raise ExecutionError('', e) from e

    def _execute_worker(self, query: str, environment: str) -> str:
        with self._lock:
            if self._connection is None:
                log.info('no engine worker connection; starting one')
                self._set_connection(self._starter())
            conn = self._connection
            try:
                return conn.execute(query, environment)
            except QueryValidationError:
                raise
            except EngineError as e:
                log.warning('engine worker pid=%s failed: %s', conn.pid, e)
                self._replace(conn)
                raise

    def _replace(self, failed: WorkerConnection):
        # caller holds self._lock
        self._set_connection(None)
        self._close_quietly(failed)
        metrics.count('worker_restarts_total')
        try:
            self._set_connection(self._starter())
        except SpawnError as e:
            metrics.count('worker_restart_failures_total')
            log.warning('error starting engine worker: %s', e)
