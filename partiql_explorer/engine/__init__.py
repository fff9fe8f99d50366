"""Bridge between the web front-end and the PartiQL engine process."""
from .connection import WorkerConnection
from .dispatcher import Dispatcher
from .errors import (EngineError, ExecutionError, ProtocolError,
                     QueryValidationError, SpawnError)

__all__ = [
    'Dispatcher', 'WorkerConnection', 'EngineError', 'ExecutionError',
    'ProtocolError', 'QueryValidationError', 'SpawnError',
]
