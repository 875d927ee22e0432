"""Tests for configuration loading, validation and task flag presets."""

from argparse import Namespace

import pytest

from config_loader import (
    ConfigLoader,
    ConfigValidationError,
    get_nested,
    resolve_task_flags,
)


@pytest.fixture
def valid_config():
    return ConfigLoader.with_defaults({
        'server': {
            'content_url': 'https://tableau.example.com/#/site/sales/',
            'username': 'admin',
            'password': 'secret',
        },
        'task': {'command': 'inventory'},
    })


class TestLoad:

    def test_defaults_and_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv('TABLEAU_PASSWORD', 's3cret')
        monkeypatch.delenv('TABLEAU_USER', raising=False)
        config_file = tmp_path / 'config.yaml'
        config_file.write_text(
            "server:\n"
            "  content_url: https://tableau.example.com/#/\n"
            "  username: ${TABLEAU_USER:-migrator}\n"
            "  password: ${TABLEAU_PASSWORD}\n"
            "upload:\n"
            "  chunk_size: 1024\n"
        )

        config = ConfigLoader.load(str(config_file))

        assert config['server']['username'] == 'migrator'
        assert config['server']['password'] == 's3cret'
        assert config['upload']['chunk_size'] == 1024
        assert config['upload']['chunk_delay'] == 0
        assert config['advanced']['page_size'] == 1000

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load(str(tmp_path / 'missing.yaml'))

    def test_non_mapping_file(self, tmp_path):
        config_file = tmp_path / 'config.yaml'
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ConfigValidationError):
            ConfigLoader.load(str(config_file))


class TestValidate:

    def test_valid_config(self, valid_config):
        ConfigLoader.validate(valid_config)

    def test_unknown_command(self, valid_config):
        valid_config['task']['command'] = 'sync'
        with pytest.raises(ConfigValidationError):
            ConfigLoader.validate(valid_config)

    def test_missing_password(self, valid_config):
        valid_config['server']['password'] = ''
        with pytest.raises(ConfigValidationError, match='server.password'):
            ConfigLoader.validate(valid_config)

    def test_unsubstituted_variable(self, valid_config):
        valid_config['server']['password'] = '${NOT_SET}'
        with pytest.raises(ConfigValidationError, match='NOT_SET'):
            ConfigLoader.validate(valid_config)

    def test_bad_url_scheme(self, valid_config):
        valid_config['server']['content_url'] = 'ftp://tableau.example.com/#/'
        with pytest.raises(ConfigValidationError):
            ConfigLoader.validate(valid_config)

    def test_import_requires_source(self, valid_config):
        valid_config['task']['command'] = 'import'
        with pytest.raises(ConfigValidationError, match='import.source_directory'):
            ConfigLoader.validate(valid_config)

    def test_chunk_size_must_be_positive(self, valid_config):
        valid_config['upload']['chunk_size'] = 0
        with pytest.raises(ConfigValidationError):
            ConfigLoader.validate(valid_config)


class TestTaskFlags:

    def test_export_preset(self, valid_config):
        valid_config['task']['command'] = 'export'

        flags = resolve_task_flags(valid_config)

        assert flags['download_datasources'] and flags['download_workbooks']
        assert flags['download_into_projects']
        assert not flags['upload_workbooks']

    def test_explicit_flag_overrides_preset(self, valid_config):
        valid_config['task'].update({'command': 'export', 'download_workbooks': False, 'get_users': True})

        flags = resolve_task_flags(valid_config)

        assert not flags['download_workbooks']
        assert flags['get_users']


class TestMergeWithArgs:

    def test_cli_values_take_precedence(self, valid_config):
        args = Namespace(
            command='export', content_url=None, username='other', output_dir='/tmp/out',
            project='Finance', tag='migrate', remove_tag=True, source_dir=None,
            remap_references=False, inventory_file=None, log_file=None, verbose=2
        )

        merged = ConfigLoader.merge_with_args(valid_config, args)

        assert merged['task']['command'] == 'export'
        assert merged['server']['username'] == 'other'
        assert merged['server']['content_url'] == valid_config['server']['content_url']
        assert merged['export']['output_directory'] == '/tmp/out'
        assert merged['export']['remove_tag_after_export'] is True
        assert merged['logging']['level'] == 'DEBUG'
        assert valid_config['task']['command'] == 'inventory'


def test_get_nested():
    config = {'a': {'b': {'c': 1}}}
    assert get_nested(config, 'a.b.c') == 1
    assert get_nested(config, 'a.x', 'fallback') == 'fallback'
