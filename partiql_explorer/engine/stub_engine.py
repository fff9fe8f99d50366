#!/usr/bin/env python3
"""Stand-in PartiQL engine for development and tests.

Speaks the same process contracts as the engine jar and the upstream CLI
but does not evaluate anything: the result is $STUB_ENGINE_RESPONSE when
set, otherwise the query and environment echoed back.

  stub_engine.py --server
      framed requests on stdin, framed responses on stdout, until stdin
      closes; a truncated frame exits with status 1
  stub_engine.py ENV_FILE
      query read from stdin, result printed to stdout
  stub_engine.py [MAIN_CLASS] --environment ENV_FILE --query Q [--output-format F]
      upstream CLI form

Control queries:  "!crash" exits at once without answering,
                  "!fail" reports a diagnostic and exits with status 1
                  (in server mode the diagnostic is returned as the result).
"""
from __future__ import annotations

import os
import sys

from partiql_explorer.engine import framing
from partiql_explorer.engine.errors import ProtocolError

CRASH = '!crash'
FAIL = '!fail'


def evaluate(query: str, environment: str) -> str:
    canned = os.environ.get('STUB_ENGINE_RESPONSE')
    if canned is not None:
        return canned
    return f'query:\n{query}\nenvironment:\n{environment}'


def _check_control(query: str, server: bool) -> None:
    if query.strip() == CRASH:
        os._exit(3)
    if query.strip() == FAIL and not server:
        print('stub engine: evaluation failed', file=sys.stderr)
        sys.exit(1)


def serve(stdin, stdout) -> int:
    print('stub engine: running in server mode; reading requests from stdin ...', file=sys.stderr)
    while True:
        try:
            request = framing.read_request(stdin)
        except ProtocolError as e:
            print(f'stub engine: {e}', file=sys.stderr)
            return 1
        if request is None:
            return 0
        query, environment = request
        print(f'stub engine: reading query:{len(query)} env:{len(environment)}', file=sys.stderr)
        _check_control(query, server=True)
        if query.strip() == FAIL:
            result = 'Execution error: stub failure'
        else:
            result = evaluate(query, environment)
        framing.write_response(stdout, result)


def _read_env(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def _option(argv, name: str) -> str:
    try:
        return argv[argv.index(name) + 1]
    except (ValueError, IndexError):
        raise SystemExit(f'stub engine: missing {name}')


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if argv == ['--server']:
        return serve(sys.stdin.buffer, sys.stdout.buffer)

    if '--environment' in argv:
        # values may start with "--" (PartiQL comments), so no argparse here
        env_path = _option(argv, '--environment')
        query = _option(argv, '--query')
    elif len(argv) == 1:
        env_path = argv[0]
        query = sys.stdin.buffer.read().decode('utf-8')
    else:
        print('Usage: pass environment path as the only arg; reads query from STDIN', file=sys.stderr)
        return 1

    _check_control(query, server=False)
    sys.stdout.buffer.write((evaluate(query, _read_env(env_path)) + '\n').encode('utf-8'))
    return 0


if __name__ == '__main__':
    sys.exit(main())
