"""Tests for the CLI task loop."""

import json
import threading
from unittest.mock import patch

import pytest

import migrate
from config_loader import ConfigLoader
from orchestrator import MigrationOrchestrator


@pytest.fixture
def orchestrator(client):
    client.sign_in.return_value = True
    config = ConfigLoader.with_defaults({
        'server': {
            'content_url': 'https://tableau.example.com/#/site/sales/',
            'username': 'admin',
            'password': 'secret',
        },
        'task': {'command': 'inventory'},
    })
    return MigrationOrchestrator(config, client=client)


@pytest.fixture
def empty_site():
    with patch('orchestrator.migration_orchestrator.ApiFetcher') as fetcher_class:
        fetcher = fetcher_class.return_value
        for name in ('fetch_projects', 'fetch_users', 'fetch_groups', 'fetch_datasources', 'fetch_workbooks'):
            getattr(fetcher, name).return_value = []
        fetcher.fetch_site_info.return_value = None
        yield fetcher


class TestRunTask:

    def test_interrupt_waits_for_worker_to_sign_out(self, orchestrator, client, capsys):
        in_step = threading.Event()

        def blocking_users():
            in_step.set()
            orchestrator._abort_event.wait(10)
            return []

        def interrupt(_seconds):
            in_step.wait(10)
            raise KeyboardInterrupt

        with patch('orchestrator.migration_orchestrator.ApiFetcher') as fetcher_class, \
                patch('migrate.time.sleep', side_effect=interrupt):
            fetcher_class.return_value.fetch_users.side_effect = blocking_users

            exit_code = migrate.run_task(orchestrator, migrate.logging.getLogger('test'))

        assert exit_code == migrate.EXIT_INTERRUPTED
        assert orchestrator.wait(0)
        client.sign_out.assert_called_once()
        fetcher_class.return_value.fetch_projects.assert_not_called()
        assert "Task aborted" in capsys.readouterr().out

    def test_errors_give_error_exit_code(self, orchestrator, client, empty_site):
        client.sign_in.return_value = False

        exit_code = migrate.run_task(orchestrator, migrate.logging.getLogger('test'))

        assert exit_code == migrate.EXIT_ERRORS
        assert orchestrator.wait(0)

    def test_json_report_written(self, orchestrator, empty_site, tmp_path):
        report_path = tmp_path / 'reports' / 'summary.json'
        orchestrator.config['output']['report_file'] = str(report_path)

        exit_code = migrate.run_task(orchestrator, migrate.logging.getLogger('test'))

        assert exit_code == migrate.EXIT_OK
        assert json.loads(report_path.read_text())['summary']['command'] == 'inventory'
