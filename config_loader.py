"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

from models import TaskCommand


class ConfigValidationError(ValueError):
    """Raised when the configuration is incomplete or inconsistent."""


# Flags every task understands; presets switch on the ones a command needs
TASK_FLAGS = (
    'get_site_info',
    'get_users',
    'get_groups',
    'get_projects',
    'get_datasources_list',
    'get_workbooks_list',
    'get_workbooks_connections',
    'download_datasources',
    'download_workbooks',
    'download_into_projects',
    'upload_datasources',
    'upload_workbooks',
)

COMMAND_PRESETS: Dict[str, Dict[str, bool]] = {
    TaskCommand.INVENTORY.value: {
        'get_site_info': True,
        'get_users': True,
        'get_groups': True,
        'get_projects': True,
        'get_datasources_list': True,
        'get_workbooks_list': True,
        'get_workbooks_connections': True,
    },
    TaskCommand.EXPORT.value: {
        'get_projects': True,
        'download_datasources': True,
        'download_workbooks': True,
        'download_into_projects': True,
    },
    TaskCommand.IMPORT.value: {
        'get_projects': True,
        'upload_datasources': True,
        'upload_workbooks': True,
    },
}

DEFAULT_CONFIG: Dict[str, Any] = {
    'server': {
        'content_url': '',
        'username': '',
        'password': '',
        'verify_ssl': True,
    },
    'task': {
        'command': TaskCommand.INVENTORY.value,
        'custom_requests': [],
        'create_project': '',
    },
    'export': {
        'output_directory': './site-export',
        'project': '',
        'tag': '',
        'remove_tag_after_export': False,
    },
    'import': {
        'source_directory': '',
        'create_missing_projects': True,
        'use_default_project': True,
        'remap_workbook_references': False,
    },
    'upload': {
        'chunk_size': 8000000,
        'chunk_delay': 0,
    },
    'output': {
        'inventory_file': '',
        'manual_steps_file': '',
        'log_file': '',
        'errors_file': '',
        'report_file': '',
    },
    'advanced': {
        'page_size': 1000,
        'request_timeout': 60,
        'download_timeout': 900,
        'max_retries': 3,
        'retry_backoff_factor': 2.0,
        'rate_limit': 0.0,
        'show_progress': False,
    },
    'logging': {
        'level': 'WARNING',
        'file': None,
        'status_level': 0,
    },
}


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Values missing from the file are filled from DEFAULT_CONFIG.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ConfigValidationError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)

        return cls.with_defaults(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return a deep copy of DEFAULT_CONFIG overlaid with ``config``."""
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), config)

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigValidationError: If validation fails
        """
        command = get_nested(config, 'task.command', TaskCommand.INVENTORY.value)
        try:
            TaskCommand(command)
        except ValueError:
            raise ConfigValidationError(
                f"task.command must be one of: {[c.value for c in TaskCommand]}"
            )

        cls._validate_required_field(config, 'server.content_url')
        cls._validate_required_field(config, 'server.username')
        cls._validate_required_field(config, 'server.password')
        cls._validate_url(get_nested(config, 'server.content_url'), 'server.content_url')

        flags = resolve_task_flags(config)

        if flags['download_datasources'] or flags['download_workbooks']:
            cls._validate_required_field(config, 'export.output_directory')
            output_dir = get_nested(config, 'export.output_directory')
            if os.path.exists(output_dir) and not os.path.isdir(output_dir):
                raise ConfigValidationError(f"export.output_directory '{output_dir}' is not a directory")

        if flags['upload_datasources'] or flags['upload_workbooks']:
            cls._validate_required_field(config, 'import.source_directory')

        custom_requests = get_nested(config, 'task.custom_requests', [])
        if not isinstance(custom_requests, list):
            raise ConfigValidationError("task.custom_requests must be a list of URLs or paths")

        chunk_size = get_nested(config, 'upload.chunk_size', 8000000)
        if not isinstance(chunk_size, int) or chunk_size < 1:
            raise ConfigValidationError("upload.chunk_size must be a positive integer")

        chunk_delay = get_nested(config, 'upload.chunk_delay', 0)
        if not isinstance(chunk_delay, (int, float)) or chunk_delay < 0:
            raise ConfigValidationError("upload.chunk_delay must be a non-negative number")

        page_size = get_nested(config, 'advanced.page_size', 1000)
        if not isinstance(page_size, int) or page_size < 1:
            raise ConfigValidationError("advanced.page_size must be a positive integer")

        for field in ('advanced.request_timeout', 'advanced.download_timeout'):
            timeout = get_nested(config, field, 60)
            if not isinstance(timeout, (int, float)) or timeout <= 0:
                raise ConfigValidationError(f"{field} must be a positive number")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ('server', 'task', 'export', 'import', 'output', 'logging'):
            merged.setdefault(section, {})

        if getattr(args, 'command', None):
            merged['task']['command'] = args.command

        if getattr(args, 'content_url', None):
            merged['server']['content_url'] = args.content_url

        if getattr(args, 'username', None):
            merged['server']['username'] = args.username

        if getattr(args, 'output_dir', None):
            merged['export']['output_directory'] = args.output_dir

        if getattr(args, 'project', None):
            merged['export']['project'] = args.project

        if getattr(args, 'tag', None):
            merged['export']['tag'] = args.tag

        if getattr(args, 'remove_tag', False):
            merged['export']['remove_tag_after_export'] = True

        if getattr(args, 'source_dir', None):
            merged['import']['source_directory'] = args.source_dir

        if getattr(args, 'remap_references', False):
            merged['import']['remap_workbook_references'] = True

        if getattr(args, 'inventory_file', None):
            merged['output']['inventory_file'] = args.inventory_file

        if getattr(args, 'report_file', None):
            merged['output']['report_file'] = args.report_file

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        if getattr(args, 'verbose', 0):
            merged['logging']['level'] = 'DEBUG' if args.verbose >= 2 else 'INFO'

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute ${VAR} and ${VAR:-default} references in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ConfigValidationError(f"Missing required configuration: {field}")

        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ConfigValidationError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if not parsed.scheme or parsed.scheme.lower() not in ['http', 'https']:
            raise ConfigValidationError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ConfigValidationError(f"{field_name} missing hostname: {url}")


def resolve_task_flags(config: Dict[str, Any]) -> Dict[str, bool]:
    """
    Work out which task steps are switched on.

    The command preset supplies defaults, explicit ``task.<flag>`` entries
    in the configuration override them.

    Args:
        config: Configuration dictionary

    Returns:
        Mapping of every name in TASK_FLAGS to a boolean
    """
    command = get_nested(config, 'task.command', TaskCommand.INVENTORY.value)
    preset = COMMAND_PRESETS.get(command, {})
    task_section = config.get('task') or {}

    flags = {}
    for flag in TASK_FLAGS:
        if flag in task_section and task_section[flag] is not None:
            flags[flag] = bool(task_section[flag])
        else:
            flags[flag] = preset.get(flag, False)
    return flags


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "server.content_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


__all__ = [
    'ConfigLoader',
    'ConfigValidationError',
    'COMMAND_PRESETS',
    'DEFAULT_CONFIG',
    'TASK_FLAGS',
    'get_nested',
    'resolve_task_flags'
]
