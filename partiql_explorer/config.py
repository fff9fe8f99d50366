"""Process launch configuration.

Values come from environment variables and may be overridden by command-line
flags (see ``cli.py``):

  EXPLORER_JAR                 path to the engine jar ("new" CLI / server mode)
  EXPLORER_CLASSPATH           -classpath for the upstream CLI ("original" mode)
  EXPLORER_NO_SERVER           1/true: never keep a persistent worker
  EXPLORER_JAVA                java launcher, default "java"
  EXPLORER_ENGINE_COMMAND      full engine command, shell-split; replaces
                               "java -jar $EXPLORER_JAR"
  EXPLORER_ADDR                listen address, "host:port" or ":port"
  PORT                         fallback listen port
  EXPLORER_CLOSE_TIMEOUT       seconds to wait for a worker to exit, default 5
  EXPLORER_MAX_RESPONSE_BYTES  optional cap on a worker response frame
"""
from __future__ import annotations

import logging
import os
import shlex
from typing import List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, field_validator, model_validator

log = logging.getLogger(__name__)

DEFAULT_PORT = 8080
_TRUE = {'1', 'true', 'yes', 'on'}


class ExplorerConfig(BaseModel):
    jar: Optional[str] = None
    classpath: Optional[str] = None
    no_server: bool = False
    java: str = 'java'
    engine_command: Optional[List[str]] = None
    addr: Optional[str] = None
    port: Optional[int] = None
    close_timeout: float = 5.0
    max_response_bytes: Optional[int] = None

    @field_validator('close_timeout')
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError('close_timeout must be positive')
        return v

    @field_validator('max_response_bytes')
    @classmethod
    def limit_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError('max_response_bytes must be positive')
        return v

    @field_validator('engine_command')
    @classmethod
    def command_not_empty(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and not v:
            return None
        return v

    @model_validator(mode='after')
    def validate_addr(self) -> 'ExplorerConfig':
        if self.addr:
            _split_addr(self.addr)
        return self

    @property
    def launcher(self) -> List[str]:
        return shlex.split(self.java)

    @property
    def engine_base_command(self) -> Optional[List[str]]:
        """Command that runs the engine jar, without mode arguments."""
        if self.engine_command:
            return list(self.engine_command)
        if self.jar:
            return self.launcher + ['-jar', self.jar]
        return None

    @property
    def use_worker(self) -> bool:
        return self.engine_base_command is not None and not self.no_server

    @property
    def oneshot_mode(self) -> Literal['new', 'original']:
        return 'new' if self.engine_base_command is not None else 'original'

    def listen_address(self) -> Tuple[str, int]:
        """Resolve (host, port): explicit addr, else $PORT, else 8080."""
        if self.addr:
            return _split_addr(self.addr)
        if self.port is not None:
            return '0.0.0.0', self.port
        return '0.0.0.0', DEFAULT_PORT


def _split_addr(addr: str) -> Tuple[str, int]:
    host, sep, port = addr.rpartition(':')
    if not sep or not port.isdigit():
        raise ValueError(f'listen address must be host:port or :port, got {addr!r}')
    return host or '0.0.0.0', int(port)


def load_config(env: Optional[Mapping[str, str]] = None, **overrides) -> ExplorerConfig:
    """Build the config from ``env`` (default os.environ) plus explicit overrides.

    Overrides whose value is None are ignored so unset CLI flags fall back to
    the environment.
    """
    if env is None:
        env = os.environ
    raw: dict = {}
    if env.get('EXPLORER_JAR'):
        raw['jar'] = env['EXPLORER_JAR']
    if env.get('EXPLORER_CLASSPATH'):
        raw['classpath'] = env['EXPLORER_CLASSPATH']
    if env.get('EXPLORER_NO_SERVER'):
        raw['no_server'] = env['EXPLORER_NO_SERVER'].strip().lower() in _TRUE
    if env.get('EXPLORER_JAVA'):
        raw['java'] = env['EXPLORER_JAVA']
    if env.get('EXPLORER_ENGINE_COMMAND'):
        raw['engine_command'] = shlex.split(env['EXPLORER_ENGINE_COMMAND'])
    if env.get('EXPLORER_ADDR'):
        raw['addr'] = env['EXPLORER_ADDR']
    if env.get('PORT'):
        raw['port'] = env['PORT']
    if env.get('EXPLORER_CLOSE_TIMEOUT'):
        raw['close_timeout'] = env['EXPLORER_CLOSE_TIMEOUT']
    if env.get('EXPLORER_MAX_RESPONSE_BYTES'):
        raw['max_response_bytes'] = env['EXPLORER_MAX_RESPONSE_BYTES']
    raw.update({k: v for k, v in overrides.items() if v is not None})
    config = ExplorerConfig(**raw)
    log.debug('loaded config: %s', config)
    return config
