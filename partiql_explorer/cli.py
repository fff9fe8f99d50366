"""partiql-explorer — serve the PartiQL Explorer web front-end.

Usage
-----
    partiql-explorer --jar build/partiqldemo.jar
    partiql-explorer --jar build/partiqldemo.jar --no-server
    partiql-explorer --classpath 'lib/*' --addr 127.0.0.1:9000
    partiql-explorer --engine-command 'python -m partiql_explorer.engine.stub_engine'

With --jar (or --engine-command) the engine runs as one persistent worker
unless --no-server is given, in which case every query starts a fresh
engine process.  Without either, the upstream CLI main class is launched per
query using --classpath.

Every flag can also be given through the environment; see ``config.py``.
The listen address is --addr, else :$PORT, else :8080.
"""
from __future__ import annotations

import argparse
import logging
import shlex
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config import load_config


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog='partiql-explorer',
                                description='Execute PartiQL queries from a browser.')
    p.add_argument('--classpath', help='-classpath argument for the original CLI')
    p.add_argument('--jar', help='path to jar for the new CLI')
    p.add_argument('--java', help='java launcher (default: java)')
    p.add_argument('--engine-command', help='full engine command; replaces "java -jar JAR"')
    p.add_argument('--addr', help='address for HTTP requests, host:port or :port')
    p.add_argument('--no-server', action='store_true', default=None,
                   help='do not keep a persistent engine worker')
    p.add_argument('--log-level', default='INFO',
                   choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        config = load_config(
            jar=args.jar,
            classpath=args.classpath,
            java=args.java,
            engine_command=shlex.split(args.engine_command) if args.engine_command else None,
            addr=args.addr,
            no_server=args.no_server,
        )
    except ValidationError as e:
        print(f'invalid configuration: {e}', file=sys.stderr)
        return 2

    import uvicorn

    from .app import create_app

    host, port = config.listen_address()
    logging.getLogger(__name__).info('listening on http://%s:%d ...', host, port)
    uvicorn.run(create_app(config), host=host, port=port, log_level=args.log_level.lower())
    return 0


if __name__ == '__main__':
    sys.exit(main())
