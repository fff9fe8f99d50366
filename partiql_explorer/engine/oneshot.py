"""One-shot engine invocation, used when no persistent worker is configured.

Every call writes the environment to a temporary file, spawns a fresh
engine process and collects its combined stdout/stderr.  Two invocation
variants exist:

  original  the upstream CLI main class; the query is passed as an argument:
              java [-classpath CP] org.partiql.cli.Main --environment FILE
                   --output-format PARTIQL --query QUERY
  new       the bundled jar; the query is written to the child's stdin:
              java -jar JAR FILE

A failing engine run raises ExecutionError carrying the engine's own output
so it can be shown to the user.
"""
from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from .errors import ExecutionError

log = logging.getLogger(__name__)

MAIN_CLASS = 'org.partiql.cli.Main'
OUTPUT_FORMAT = 'PARTIQL'


@contextmanager
def environment_file(environment: str) -> Iterator[str]:
    """Yield the path of a temporary file holding ``environment``.

    The file is removed when the block exits, whichever way it exits.
    """
    fd, path = tempfile.mkstemp(prefix='partiql-env-', suffix='.env')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(environment)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


def _decode(out: bytes) -> str:
    return out.decode('utf-8', errors='replace')


def execute_original(environment: str, query: str, classpath: Optional[str] = None,
                     launcher: Sequence[str] = ('java',), main_class: str = MAIN_CLASS) -> str:
    """Run the upstream CLI with the query as a command-line argument."""
    with environment_file(environment) as env_path:
        args: List[str] = list(launcher)
        if classpath:
            args += ['-classpath', classpath]
        args += [main_class, '--environment', env_path,
                 '--output-format', OUTPUT_FORMAT, '--query', query]
        try:
            proc = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
        except OSError as e:
            raise ExecutionError('', e) from e
    out = _decode(proc.stdout)
    if proc.returncode != 0:
        raise ExecutionError(out, subprocess.CalledProcessError(proc.returncode, args))
    return out


def execute_new(environment: str, query: str, command: Sequence[str]) -> str:
    """Run ``command ENV_FILE`` and feed the query on stdin.

    The query is written from a separate thread while this thread drains the
    combined output, so neither side can block the other.  A write failure
    is only reported after the output has been fully collected.
    """
    with environment_file(environment) as env_path:
        args = list(command) + [env_path]
        try:
            proc = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise ExecutionError('', e) from e

        write_errors: list = []

        def _write():
            try:
                proc.stdin.write(query.encode('utf-8'))  # type: ignore
            except OSError as e:
                write_errors.append(e)
            try:
                proc.stdin.close()  # type: ignore
            except OSError as e:
                write_errors.append(e)

        writer = threading.Thread(target=_write, name='engine-stdin-writer', daemon=True)
        writer.start()
        out = _decode(proc.stdout.read())  # type: ignore
        proc.stdout.close()  # type: ignore
        rc = proc.wait()
        writer.join()

    if rc != 0:
        raise ExecutionError(out, subprocess.CalledProcessError(rc, args))
    if write_errors:
        raise ExecutionError(out, write_errors[0])
    return out


def execute_once(environment: str, query: str, engine_command: Optional[Sequence[str]] = None,
                 classpath: Optional[str] = None, launcher: Sequence[str] = ('java',)) -> str:
    """Run one query in a fresh engine process.

    With an engine command the "new" variant is used, otherwise the
    upstream CLI is launched through ``launcher``.
    """
    if engine_command:
        return execute_new(environment, query, engine_command)
    return execute_original(environment, query, classpath=classpath, launcher=launcher)
