"""Tests for the command line entry point."""

import json
import logging
import sys

import pytest

import main as cli
from core import config_manager
from core.relay_client import RelayRequestError

REAL_SETUP_EXCEPTION_HANDLER = cli.setup_exception_handler


@pytest.fixture(autouse=True)
def startup_calls(monkeypatch):
    """Keep root logging handlers and sys.excepthook untouched; record setup order"""
    calls = []
    monkeypatch.setattr(cli, 'setup_logging', lambda *a, **kw: calls.append('logging'))
    monkeypatch.setattr(cli, 'setup_exception_handler', lambda: calls.append('excepthook'))
    return calls


@pytest.fixture
def no_env_key(monkeypatch):
    monkeypatch.delenv(cli.API_KEY_ENV, raising=False)


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 0
    assert 'serve' in capsys.readouterr().out


def test_client_command_without_key_fails_before_request(monkeypatch, no_env_key):
    async def must_not_run(args, session):
        raise AssertionError('request sent without a key')

    monkeypatch.setattr(cli, 'run_client_command', must_not_run)

    assert cli.main(['employees']) == 2


def test_client_command_prints_json(monkeypatch, capsys, no_env_key):
    seen = {}

    async def fake_command(args, session):
        seen['command'] = args.command
        seen['employee_id'] = args.employee_id
        seen['relay_url'] = session.relay_url
        seen['api_key'] = session.api_key
        return {'status': 1}

    monkeypatch.setattr(cli, 'run_client_command', fake_command)

    code = cli.main(['clockin', '42', '--relay-url', 'http://relay.test/', '--api-key', 'k'])

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {'status': 1}
    assert seen == {'command': 'clockin', 'employee_id': '42', 'relay_url': 'http://relay.test', 'api_key': 'k'}


def test_api_key_from_environment(monkeypatch):
    monkeypatch.setenv(cli.API_KEY_ENV, 'from-env')
    seen = {}

    async def fake_command(args, session):
        seen['api_key'] = session.api_key
        return []

    monkeypatch.setattr(cli, 'run_client_command', fake_command)

    assert cli.main(['employees']) == 0
    assert seen['api_key'] == 'from-env'


def test_relay_error_exit_code(monkeypatch, no_env_key):
    async def failing_command(args, session):
        raise RelayRequestError('Error clocking out', 400, 'nope')

    monkeypatch.setattr(cli, 'run_client_command', failing_command)

    assert cli.main(['clockout', '3', '--api-key', 'k']) == 1


class _StubManager:
    def __init__(self, started):
        self.started = started
        self.is_running = False
        self.stopped = False

    def start(self, host=None, port=None):
        return self.started

    def stop(self):
        self.stopped = True

    def get_status(self):
        return {'error': {'type': 'port', 'details': 'Port 8787 is in use'}}


def test_run_server_reports_start_failure():
    manager = _StubManager(started=False)
    assert cli.run_server(manager) == 1
    assert manager.stopped is False


def test_run_server_stops_manager():
    manager = _StubManager(started=True)
    assert cli.run_server(manager) == 0
    assert manager.stopped is True


def test_logging_is_configured_before_config_is_loaded(monkeypatch, startup_calls):
    real_get_config = config_manager.get_config

    def recording_get_config():
        startup_calls.append('config')
        return real_get_config()

    monkeypatch.setattr(config_manager, 'get_config', recording_get_config)

    assert cli.main([]) == 0
    assert startup_calls == ['logging', 'excepthook', 'config']


def test_exception_handler_logs_uncaught_errors(monkeypatch, caplog):
    monkeypatch.setattr(sys, 'excepthook', sys.excepthook)

    REAL_SETUP_EXCEPTION_HANDLER()

    with caplog.at_level(logging.CRITICAL, logger='main'):
        sys.excepthook(RuntimeError, RuntimeError('boom'), None)

    assert 'Unhandled exception' in caplog.text
