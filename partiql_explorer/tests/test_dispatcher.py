import logging
from unittest.mock import MagicMock

import pytest

from partiql_explorer import metrics
from partiql_explorer.config import ExplorerConfig
from partiql_explorer.engine.dispatcher import Dispatcher
from partiql_explorer.engine.errors import (ProtocolError, QueryValidationError,
                                            SpawnError)


class FakeConnection:
    def __init__(self, pid, fail=False):
        self.pid = pid
        self.fail = fail
        self.executed = []
        self.closed = 0

    def alive(self):
        return self.closed == 0

    def execute(self, query, environment):
        self.executed.append(query)
        if self.fail:
            raise ProtocolError('short read: expected 4 bytes, got 0')
        return f'result of {query}'

    def close(self, timeout=None):
        self.closed += 1


class Starter:
    """Hands out prepared connections (or raises prepared errors) in order."""

    def __init__(self, *items):
        self.items = list(items)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


WORKER = ExplorerConfig(jar='partiqldemo.jar')


def test_empty_fields_rejected_before_any_process():
    starter, run_once = Starter(), MagicMock()
    d = Dispatcher(WORKER, starter=starter, run_once=run_once)
    for query, env in (('', '{}'), ('SELECT 1', ''), ('', '')):
        with pytest.raises(QueryValidationError, match='must not be empty'):
            d.execute(query, env)
    assert starter.calls == 0
    run_once.assert_not_called()


def test_no_worker_configured_routes_to_original_one_shot():
    starter, run_once = Starter(), MagicMock(return_value='<< 1 >>')
    d = Dispatcher(ExplorerConfig(classpath='lib/*'), starter=starter, run_once=run_once)
    d.start()
    assert d.mode == 'original'
    assert d.execute('SELECT 1', '{}') == '<< 1 >>'
    assert d.execute('SELECT 2', '{}') == '<< 1 >>'
    assert starter.calls == 0
    assert run_once.call_count == 2
    args, kwargs = run_once.call_args
    assert args == ('{}', 'SELECT 2')
    assert kwargs['engine_command'] is None
    assert kwargs['classpath'] == 'lib/*'
    assert kwargs['launcher'] == ['java']


def test_no_server_with_jar_routes_to_new_one_shot():
    starter, run_once = Starter(), MagicMock(return_value='ok')
    d = Dispatcher(ExplorerConfig(jar='x.jar', no_server=True), starter=starter, run_once=run_once)
    d.start()
    assert d.mode == 'new'
    d.execute('SELECT 1', '{}')
    assert run_once.call_args.kwargs['engine_command'] == ['java', '-jar', 'x.jar']
    assert starter.calls == 0


def test_healthy_worker_serves_every_request():
    conn = FakeConnection(1)
    starter, run_once = Starter(conn), MagicMock()
    d = Dispatcher(WORKER, starter=starter, run_once=run_once)
    d.start()
    for i in range(5):
        assert d.execute(f'SELECT {i}', '{}') == f'result of SELECT {i}'
    assert len(conn.executed) == 5
    assert starter.calls == 1
    run_once.assert_not_called()
    assert metrics.value('engine_executions_total', mode='worker', status='ok') == 5


def test_failed_connection_is_replaced_and_never_reused():
    bad, good = FakeConnection(1, fail=True), FakeConnection(2)
    starter, run_once = Starter(bad, good), MagicMock()
    d = Dispatcher(WORKER, starter=starter, run_once=run_once)
    d.start()

    with pytest.raises(ProtocolError):
        d.execute('SELECT 1', '{}')
    assert bad.closed == 1
    assert starter.calls == 2

    assert d.execute('SELECT 2', '{}') == 'result of SELECT 2'
    assert bad.executed == ['SELECT 1']
    assert good.executed == ['SELECT 2']
    run_once.assert_not_called()
    assert metrics.value('worker_restarts_total') == 1
    assert metrics.value('engine_executions_total', mode='worker', status='error') == 1


def test_failed_replacement_is_logged_then_recovered(caplog):
    bad, good = FakeConnection(1, fail=True), FakeConnection(2)
    starter = Starter(bad, SpawnError('cannot start engine worker'), good)
    run_once = MagicMock()
    d = Dispatcher(WORKER, starter=starter, run_once=run_once)
    d.start()

    with caplog.at_level(logging.WARNING):
        with pytest.raises(ProtocolError):
            d.execute('SELECT 1', '{}')
    assert 'error starting engine worker' in caplog.text
    assert d.health()['worker_alive'] is False
    assert metrics.value('worker_restart_failures_total') == 1

    # next request starts a worker first instead of falling back to one-shot
    assert d.execute('SELECT 2', '{}') == 'result of SELECT 2'
    assert starter.calls == 3
    run_once.assert_not_called()


def test_missing_worker_that_cannot_start_fails_request():
    starter, run_once = Starter(SpawnError('no java')), MagicMock()
    d = Dispatcher(WORKER, starter=starter, run_once=run_once)
    with pytest.raises(SpawnError):
        d.execute('SELECT 1', '{}')
    run_once.assert_not_called()


def test_start_failure_propagates():
    d = Dispatcher(WORKER, starter=Starter(SpawnError('no java')))
    with pytest.raises(SpawnError):
        d.start()


def test_close_shuts_down_worker():
    conn = FakeConnection(7)
    d = Dispatcher(WORKER, starter=Starter(conn))
    d.start()
    assert d.health() == {'mode': 'worker', 'worker_configured': True,
                          'worker_alive': True, 'worker_pid': 7}
    d.close()
    assert conn.closed == 1
    assert d.health()['worker_pid'] is None
    assert metrics.value('worker_alive') == 0.0


def test_close_error_is_logged_not_raised(caplog):
    conn = FakeConnection(1, fail=True)
    conn.close = MagicMock(side_effect=OSError('broken pipe'))
    d = Dispatcher(WORKER, starter=Starter(conn, FakeConnection(2)))
    d.start()
    with caplog.at_level(logging.WARNING):
        with pytest.raises(ProtocolError):
            d.execute('SELECT 1', '{}')
    assert 'error closing engine worker' in caplog.text
    conn.close.assert_called_once()


def test_worker_crash_between_requests_recovers(worker_config):
    d = Dispatcher(worker_config)
    d.start()
    try:
        assert 'SELECT 1' in d.execute('SELECT 1', '{}')
        first_pid = d.health()['worker_pid']

        d._connection._proc.kill()
        d._connection._proc.wait()

        with pytest.raises(ProtocolError):
            d.execute('SELECT 2', '{}')
        assert 'SELECT 3' in d.execute('SELECT 3', '{}')
        assert d.health()['worker_pid'] != first_pid
        assert d.health()['worker_alive'] is True
    finally:
        d.close()


def test_unframeable_request_does_not_replace_worker():
    conn = FakeConnection(1)
    conn.execute = MagicMock(side_effect=QueryValidationError('field too large to frame'))
    starter = Starter(conn)
    d = Dispatcher(WORKER, starter=starter)
    d.start()
    with pytest.raises(QueryValidationError):
        d.execute('SELECT 1', '{}')
    assert conn.closed == 0
    assert starter.calls == 1
    assert metrics.value('worker_restarts_total') == 0
