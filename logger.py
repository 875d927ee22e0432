"""Structured logging infrastructure, task status logs and progress tracking."""

import copy
import logging
import logging.handlers
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import colorlog
from tqdm import tqdm


ROOT_LOGGER_NAME = 'tableau_site_migrator'

# Entries further apart than this are separated by a blank line in snapshots
STATUS_GAP_SECONDS = 15


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Set up structured logging with configurable verbosity levels.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
        log_file: Optional path to log file
        log_format: Optional custom log format string
        date_format: Optional custom date format string
        level: Optional explicit log level string

    Returns:
        Configured logger instance
    """
    if level:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level_upper = level.upper()
        if level_upper not in allowed_levels:
            raise ValueError(
                f"Invalid log level '{level}'. Must be one of: {sorted(allowed_levels)}"
            )
        log_level = getattr(logging, level_upper)
    else:
        if verbosity >= 2:
            log_level = logging.DEBUG
        elif verbosity >= 1:
            log_level = logging.INFO
        else:
            log_level = logging.WARNING

    if log_format is None:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    if date_format is None:
        date_format = '%Y-%m-%d %H:%M:%S'

    # Root stays at WARNING to keep urllib3 and friends quiet
    logging.basicConfig(
        level=logging.WARNING,
        format=log_format,
        datefmt=date_format
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)

            logger.info(f"Logging to file: {log_file}")
            logger.info(f"Log level: {logging.getLevelName(log_level)}")
        except OSError as e:
            logger.warning(f"Failed to set up file logging: {str(e)}")
    else:
        logger.info(f"Console logging only. Level: {logging.getLevelName(log_level)}")

    return logger


@dataclass(frozen=True)
class StatusEntry:
    """One timestamped line of a task log."""
    timestamp: datetime
    text: str


class TaskStatusLogs:
    """
    Thread-safe status and error logs for a running migration task.

    The worker thread appends whole entries under a lock while the polling
    side (CLI or tests) takes full-text snapshots at any time. Every entry is
    also forwarded to the python logger so it reaches the console and the
    rotating log file.
    """

    def __init__(
        self,
        min_status_level: int = 0,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the task logs.

        Args:
            min_status_level: Status entries with a level below this are dropped.
                Negative levels are always kept and rendered indented.
            logger: Optional logger the entries are mirrored to
        """
        self.min_status_level = min_status_level
        self.logger = logger or logging.getLogger(f'{ROOT_LOGGER_NAME}.task')
        self._lock = threading.Lock()
        self._status: List[StatusEntry] = []
        self._errors: List[StatusEntry] = []

    def add_status(self, text: str, level: int = 0) -> None:
        """
        Append a status line.

        Args:
            text: Human readable status text
            level: Verbosity level; higher levels are more detailed
        """
        if level >= 0 and level < self.min_status_level:
            return
        if level < 0:
            text = "       " + text
        self._append(self._status, text)
        self.log(text, logging.INFO if level <= 0 else logging.DEBUG)

    def add_status_header(self, text: str) -> None:
        """Append a status line framed by lines of asterisks."""
        stars = "*" * max(len(text), 20)
        with self._lock:
            now = datetime.now()
            self._status.append(StatusEntry(now, stars))
            self._status.append(StatusEntry(now, text))
            self._status.append(StatusEntry(now, stars))
        self.log(text, logging.INFO)

    def add_error(self, text: str) -> None:
        """Append an error to the error log and mirror it into the status log."""
        now = datetime.now()
        with self._lock:
            self._errors.append(StatusEntry(now, text))
            self._status.append(StatusEntry(now, f"Error: {text}"))
        self.log(text, logging.ERROR)

    def log(self, text: str, severity: int = logging.INFO) -> None:
        """Forward a (text, severity) pair to the python logger."""
        self.logger.log(severity, text)

    @property
    def error_count(self) -> int:
        with self._lock:
            return len(self._errors)

    def status_entries(self) -> Tuple[StatusEntry, ...]:
        with self._lock:
            return tuple(self._status)

    def error_entries(self) -> Tuple[StatusEntry, ...]:
        with self._lock:
            return tuple(self._errors)

    def status_text(self, max_entries: Optional[int] = None) -> str:
        """
        Snapshot of the status log as text.

        Args:
            max_entries: Only render the most recent entries when set

        Returns:
            Newline separated, index prefixed log text
        """
        return self._render(self.status_entries(), max_entries)

    def error_text(self) -> str:
        """Snapshot of the error log as text."""
        return self._render(self.error_entries(), None)

    def _append(self, target: List[StatusEntry], text: str) -> None:
        entry = StatusEntry(datetime.now(), text)
        with self._lock:
            target.append(entry)

    @staticmethod
    def _render(entries: Tuple[StatusEntry, ...], max_entries: Optional[int]) -> str:
        start = 0
        if max_entries is not None and len(entries) > max_entries:
            start = len(entries) - max_entries

        lines = []
        previous: Optional[datetime] = None
        for index in range(start, len(entries)):
            entry = entries[index]
            if previous is not None and (entry.timestamp - previous).total_seconds() > STATUS_GAP_SECONDS:
                lines.append("")
            lines.append(f"{index:03d}, {entry.timestamp:%H:%M:%S}: {entry.text}")
            previous = entry.timestamp
        return "\n".join(lines)


class ProgressTracker:
    """
    Progress of one item loop: a tqdm bar plus a summary in the log.

    Use as a context manager around the loop and call ``increment`` once
    per processed item. The bar is only drawn when ``show_progress`` is set
    so that status lines printed by the CLI are not interleaved with it.
    """

    def __init__(self, total_items: int, item_type: str = "items", show_progress: bool = False):
        self.total_items = total_items
        self.item_type = item_type
        self.show_progress = show_progress
        self.successful_items = 0
        self.failed_items = 0
        self.start_time: Optional[float] = None
        self.logger = logging.getLogger(f'{ROOT_LOGGER_NAME}.progress')
        self._bar: Optional[tqdm] = None

    @property
    def processed_items(self) -> int:
        return self.successful_items + self.failed_items

    def __enter__(self) -> 'ProgressTracker':
        self.start_time = time.time()
        self._bar = tqdm(total=self.total_items, desc=self.item_type, disable=not self.show_progress)
        self.logger.debug(f"Processing {self.total_items} {self.item_type}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._bar is not None:
            self._bar.close()
        stats = self.get_stats()
        log_method = self.logger.warning if self.failed_items else self.logger.info
        log_method(
            f"{self.item_type}: {stats['successful']}/{stats['total']} succeeded, "
            f"{stats['failed']} failed, {stats['skipped']} not processed "
            f"in {stats['elapsed_time_formatted']}"
        )

    def increment(self, success: bool = True) -> None:
        """Count one processed item."""
        if success:
            self.successful_items += 1
        else:
            self.failed_items += 1
        if self._bar is not None:
            self._bar.update(1)
            self._bar.set_postfix(failed=self.failed_items, refresh=False)

    def get_stats(self) -> Dict[str, Any]:
        elapsed = time.time() - self.start_time if self.start_time is not None else 0.0
        return {
            'total': self.total_items,
            'processed': self.processed_items,
            'successful': self.successful_items,
            'failed': self.failed_items,
            'skipped': self.total_items - self.processed_items,
            'elapsed_time': elapsed,
            'elapsed_time_formatted': format_elapsed(elapsed)
        }


def format_elapsed(seconds: float) -> str:
    """Format a duration as ``12.3s``, ``4m 5s`` or ``1h 2m 3s``."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


def log_section(title: str) -> None:
    """
    Log a decorative section header.

    Args:
        title: Section title to display
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    separator = "=" * 60
    logger.info("")
    logger.info(separator)
    logger.info(f"  {title.upper()}")
    logger.info(separator)
    logger.info("")


def log_config(config: Dict[str, Any]) -> None:
    """
    Log sanitized configuration for debugging.

    Args:
        config: Configuration dictionary to log
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    sanitized_config = _sanitize_config(config)

    log_section("Configuration")

    server = sanitized_config.get('server', {})
    logger.info(f"Content URL: {server.get('content_url', 'Not Set')}")
    if server.get('username'):
        logger.info(f"Username: {server.get('username')}")
    if server.get('password'):
        logger.info("Password: ***REDACTED***")
    logger.info(f"Verify SSL: {server.get('verify_ssl', True)}")

    logger.info("")

    task = sanitized_config.get('task', {})
    logger.info(f"Command: {task.get('command', 'inventory')}")
    if task.get('custom_requests'):
        logger.info(f"Custom Requests: {len(task.get('custom_requests'))}")
    if task.get('create_project'):
        logger.info(f"Create Project: {task.get('create_project')}")

    export_settings = sanitized_config.get('export', {})
    logger.info(f"Output Directory: {export_settings.get('output_directory', './site-export')}")
    logger.info(f"Project Filter: {export_settings.get('project') or 'Not Set'}")
    logger.info(f"Tag Filter: {export_settings.get('tag') or 'Not Set'}")
    logger.info(f"Remove Tag After Export: {export_settings.get('remove_tag_after_export', False)}")

    import_settings = sanitized_config.get('import', {})
    if import_settings.get('source_directory'):
        logger.info(f"Source Directory: {import_settings.get('source_directory')}")
        logger.info(f"Create Missing Projects: {import_settings.get('create_missing_projects', True)}")
        logger.info(f"Remap Workbook References: {import_settings.get('remap_workbook_references', False)}")

    upload = sanitized_config.get('upload', {})
    logger.info(f"Upload Chunk Size: {upload.get('chunk_size', 8000000)}")


def _sanitize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a sanitized copy of configuration with sensitive fields masked.

    Args:
        config: Configuration dictionary

    Returns:
        Sanitized configuration copy
    """
    sanitized = copy.deepcopy(config)

    sensitive_fields = {
        'password', 'secret', 'token', 'auth_header'
    }

    def mask_sensitive(data: Any) -> Any:
        """Recursively mask sensitive fields."""
        if isinstance(data, dict):
            masked = {}
            for key, value in data.items():
                is_sensitive = any(sensitive in key.lower() for sensitive in sensitive_fields)

                if is_sensitive and isinstance(value, str):
                    masked[key] = "***REDACTED***"
                else:
                    masked[key] = mask_sensitive(value)

            return masked
        elif isinstance(data, list):
            return [mask_sensitive(item) for item in data]
        else:
            return data

    return mask_sensitive(sanitized)


__all__ = [
    'setup_logging',
    'StatusEntry',
    'TaskStatusLogs',
    'ProgressTracker',
    'log_section',
    'log_config',
    'format_elapsed'
]
