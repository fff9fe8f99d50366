"""Error taxonomy for the engine bridge.

EngineError is the base for everything the bridge raises:

  SpawnError           the engine process (or its pipes) could not be created
  ProtocolError        a framed exchange with a worker did not complete
  ExecutionError       the engine ran but failed; carries its raw diagnostics
  QueryValidationError query or environment missing; raised before any process
"""
from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    pass


class SpawnError(EngineError):
    pass


class ProtocolError(EngineError):
    pass


class QueryValidationError(EngineError):
    pass


class ExecutionError(EngineError):
    """The engine reported a failure.

    ``output`` is the engine's combined stdout/stderr text, shown to the user
    verbatim.  ``cause`` is the underlying exception (non-zero exit, launch
    failure, broken stdin pipe) or None.
    """

    def __init__(self, output: str, cause: Optional[BaseException] = None):
        self.output = output
        self._cause = cause
        super().__init__(output, cause)

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    def __str__(self) -> str:
        return f'query exec: {self.output}; original err {self._cause}'
