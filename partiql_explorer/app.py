"""PartiQL Explorer — FastAPI front-end for the PartiQL engine.

Routes:
  GET  /              tutorial query and data, executed and rendered
  POST /execute       form fields ``query`` and ``env``, executed and rendered
  GET  /health        liveness
  GET  /health/worker engine mode and persistent worker state
  GET  /metrics       Prometheus text-format metrics

Engine failures (ExecutionError) are shown in the results pane.  Validation,
protocol and spawn failures return 500 with the error text as the body.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Form, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from . import metrics as _metrics
from .config import ExplorerConfig, load_config
from .engine import Dispatcher, EngineError, ExecutionError
from .examples import TUTORIAL_ENVIRONMENT, TUTORIAL_QUERY

log = logging.getLogger(__name__)

EXECUTE_PATH = '/execute'
TEMPLATES_DIR = Path(__file__).with_name('templates')

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def _render(request: Request, dispatcher: Dispatcher, query: str, environment: str):
    try:
        result = dispatcher.execute(query, environment)
    except ExecutionError as e:
        result = str(e)
    return templates.TemplateResponse(request, 'index.html', {
        'execute_path': EXECUTE_PATH,
        'query': query,
        'environment': environment,
        'result': result,
    })


def create_app(config: Optional[ExplorerConfig] = None,
               dispatcher: Optional[Dispatcher] = None) -> FastAPI:
    """Build the app.  The worker (if any) starts with the app's lifespan."""
    if dispatcher is None:
        dispatcher = Dispatcher(config if config is not None else load_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(dispatcher.start)
        log.info('PartiQL Explorer started (mode=%s)', dispatcher.mode)
        yield
        await run_in_threadpool(dispatcher.close)
        log.info('PartiQL Explorer shutting down')

    app = FastAPI(title='PartiQL Explorer', lifespan=lifespan)
    app.state.dispatcher = dispatcher

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        log.warning('%s %s failed: %s', request.method, request.url.path, exc)
        return PlainTextResponse(str(exc), status_code=500)

    @app.get('/', response_class=HTMLResponse)
    def handle_root(request: Request):
        log.info('handle_root %s %s', request.method, request.url)
        return _render(request, dispatcher, TUTORIAL_QUERY, TUTORIAL_ENVIRONMENT)

    @app.post(EXECUTE_PATH, response_class=HTMLResponse)
    def handle_execute(request: Request, query: str = Form(''), env: str = Form('')):
        log.info('handle_execute %s %s', request.method, request.url)
        return _render(request, dispatcher, query, env)

    @app.get('/health')
    def health():
        return {'status': 'ok'}

    @app.get('/health/worker')
    def health_worker():
        """Report the engine mode and the persistent worker's state."""
        return dispatcher.health()

    @app.get('/metrics')
    def metrics_endpoint():
        """Prometheus text-format metrics."""
        text = _metrics.render()
        return PlainTextResponse(content=text, media_type='text/plain; version=0.0.4')

    return app
