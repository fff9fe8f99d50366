from unittest.mock import patch

from partiql_explorer import cli


def test_flags_build_config_and_serve():
    with patch('uvicorn.run') as run:
        rc = cli.main(['--jar', 'p.jar', '--no-server', '--addr', '127.0.0.1:9999'])
    assert rc == 0
    app = run.call_args.args[0]
    assert run.call_args.kwargs['host'] == '127.0.0.1'
    assert run.call_args.kwargs['port'] == 9999
    assert app.state.dispatcher.mode == 'new'


def test_engine_command_flag():
    with patch('uvicorn.run') as run:
        cli.main(['--engine-command', 'python -m partiql_explorer.engine.stub_engine'])
    assert run.call_args.args[0].state.dispatcher.mode == 'worker'


def test_invalid_addr_exits_with_usage_error(capsys):
    with patch('uvicorn.run') as run:
        rc = cli.main(['--addr', 'nonsense'])
    assert rc == 2
    assert 'invalid configuration' in capsys.readouterr().err
    run.assert_not_called()
