"""Persistent engine worker with framed IPC.

A WorkerConnection owns one long-lived engine process started in server
mode.  Requests and responses travel over the child's stdin/stdout using
the framing in ``engine.framing``; the child's stderr is inherited so its
diagnostics land in the server's log.

There are no request ids on the wire: responses are matched to requests by
stream order, so only one request may be in flight per connection.  The
dispatcher serializes access; the connection itself additionally refuses
to be used again once any exchange on it has failed.
"""
from __future__ import annotations

import logging
import subprocess
from typing import List, Optional, Sequence

from . import framing
from .errors import ProtocolError, QueryValidationError, SpawnError

log = logging.getLogger(__name__)

SERVER_FLAG = '--server'


class WorkerConnection:
    """A single engine subprocess plus its request/response pipes."""

    def __init__(self, proc: subprocess.Popen, max_response_bytes: Optional[int] = None):
        self._proc = proc
        self._to_process = proc.stdin
        self._from_process = proc.stdout
        self._max_response_bytes = max_response_bytes
        self.poisoned = False

    @classmethod
    def start(cls, command: Sequence[str], max_response_bytes: Optional[int] = None) -> 'WorkerConnection':
        """Spawn ``command --server`` and wire up its pipes.

        Raises SpawnError if the process cannot be created.
        """
        args: List[str] = list(command) + [SERVER_FLAG]
        try:
            proc = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=None,  # inherit
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f'cannot start engine worker {args!r}: {e}') from e
        if proc.stdin is None or proc.stdout is None:
            proc.kill()
            proc.wait()
            raise SpawnError('engine worker started without stdio pipes')
        log.info('started engine worker pid=%s: %s', proc.pid, ' '.join(args))
        return cls(proc, max_response_bytes=max_response_bytes)

    @property
    def pid(self) -> int:
        return self._proc.pid

    def alive(self) -> bool:
        return not self.poisoned and self._proc.poll() is None

    def execute(self, query: str, environment: str) -> str:
        """Send one request and block for its response.

        Fields too large to frame raise QueryValidationError before anything
        is sent and leave the connection usable.  Any other failure poisons
        the connection and raises ProtocolError.
        """
        if self.poisoned:
            raise ProtocolError('worker connection already failed; it cannot be reused')
        try:
            frame = framing.encode_request(query, environment)
        except ProtocolError as e:
            raise QueryValidationError(str(e)) from e
        try:
            framing.write_frame(self._to_process, frame)
            result = framing.read_response(self._from_process, self._max_response_bytes)
        except ProtocolError:
            self.poisoned = True
            raise
        except (OSError, ValueError) as e:
            # ValueError: I/O on a closed pipe
            self.poisoned = True
            raise ProtocolError(f'worker i/o failed: {e}') from e
        log.debug('read worker response len=%d', len(result))
        return result

    def close(self, timeout: Optional[float] = None) -> None:
        """Close both pipes and reap the process.

        All three steps are always attempted; the first error encountered is
        re-raised once they are done.  A non-zero exit status counts as the
        wait step's error (CalledProcessError).
        """
        self.poisoned = True
        errors: List[BaseException] = []
        for stream in (self._to_process, self._from_process):
            try:
                stream.close()
            except OSError as e:
                errors.append(e)
        try:
            rc = self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            errors.append(e)
            self._proc.kill()
            self._proc.wait()
        else:
            if rc != 0:
                errors.append(subprocess.CalledProcessError(rc, self._proc.args))
        if errors:
            raise errors[0]
        log.info('engine worker pid=%s exited rc=%s', self._proc.pid, self._proc.returncode)
