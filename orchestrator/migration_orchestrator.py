"""
Migration orchestrator coordinating one task run.

A task runs on a single background worker thread. The thread signs in,
works through the steps switched on by the task flags and signs out; the
caller polls ``is_done`` and reads status snapshots while it runs.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config_loader import get_nested, resolve_task_flags
from exporters.content_exporter import ContentExporter
from exporters.tag_remover import TagRemover
from fetchers.api_fetcher import ApiFetcher
from fetchers.base_fetcher import FetcherError
from fetchers.content_filters import apply_filters
from importers.content_importer import (
    ContentImporter,
    DirectoryValidationError,
    REMAP_WORKSPACE_DIRECTORY,
    validate_source_directory,
)
from importers.manual_actions import ManualActionTracker
from importers.project_resolver import ProjectResolver
from importers.reference_remapper import WorkbookReferenceRemapper, clear_workspace
from logger import TaskStatusLogs, log_section
from models import (
    ContentKind,
    Datasource,
    FilterCriteria,
    Group,
    Project,
    SiteInfo,
    UploadBehaviorProjects,
    User,
    Workbook,
)
from server_client import AuthenticationFailure, ServerClient, ServerRequestError
from server_urls import UnrecognizedUrlFormatError
from .migration_report import MigrationReport

# Longest custom request response kept in the status log
CUSTOM_RESULT_MAX_CHARS = 2000


class TaskAbortedError(Exception):
    """Raised inside the worker when an abort was requested."""


class MigrationOrchestrator:
    """Runs the steps of one task against one site."""

    def __init__(
        self,
        config: Dict[str, Any],
        status_log: Optional[TaskStatusLogs] = None,
        client: Optional[ServerClient] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Complete configuration (defaults applied)
            status_log: Task status/error log; created from ``logging.status_level`` if omitted
            client: Pre-built server client; built from the configuration if omitted
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger('tableau_site_migrator.orchestrator')
        self.flags = resolve_task_flags(config)
        self.command = get_nested(config, 'task.command', 'inventory')
        self.status_log = status_log or TaskStatusLogs(
            min_status_level=get_nested(config, 'logging.status_level', 0) or 0
        )
        self.client = client
        self.manual_actions = ManualActionTracker()
        self.report = MigrationReport()

        self.site_info: Optional[SiteInfo] = None
        self.projects: List[Project] = []
        self.users: List[User] = []
        self.groups: List[Group] = []
        self.datasources: List[Datasource] = []
        self.workbooks: List[Workbook] = []
        self.phase_stats: Dict[str, Dict[str, Any]] = {}
        self.duration = 0.0

        self._fetcher: Optional[ApiFetcher] = None
        self._project_filter_missing = False
        self._abort_event = threading.Event()
        self._done_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

        enabled = [name for name, on in self.flags.items() if on]
        self.logger.info(f"Orchestrator initialized: command={self.command}, steps={enabled}")

    @property
    def is_done(self) -> bool:
        return self._done_event.is_set()

    @property
    def abort_requested(self) -> bool:
        return self._abort_event.is_set()

    def execute_task_begin(self) -> threading.Thread:
        """
        Start the task on a background worker thread.

        Raises:
            RuntimeError: If the task was already started
        """
        if self._worker is not None:
            raise RuntimeError("Task already started")
        self._worker = threading.Thread(
            target=self._execute_task_internal,
            name='migration-task',
            daemon=True
        )
        self._worker.start()
        return self._worker

    def run(self) -> None:
        """Run the task on the calling thread."""
        self._execute_task_internal()

    def abort(self, mark_as_done: bool = True) -> None:
        """
        Ask the worker to stop at the next step or item boundary.

        Args:
            mark_as_done: Report the task as done right away rather than when
                the worker reaches the next check
        """
        self.status_log.add_status("Abort requested")
        self._abort_event.set()
        if mark_as_done:
            self._done_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the worker thread has exited.

        An abort with ``mark_as_done`` reports the task done before the
        worker has unwound, so this joins the thread rather than trusting
        ``is_done``.

        Returns:
            True once the worker has exited (or the task is done when it
            never ran on a worker)
        """
        if self._worker is not None:
            self._worker.join(timeout)
            return not self._worker.is_alive()
        return self._done_event.wait(timeout)

    def status_text(self, max_entries: Optional[int] = None) -> str:
        return self.status_log.status_text(max_entries)

    def error_text(self) -> str:
        return self.status_log.error_text()

    def _execute_task_internal(self) -> None:
        start_time = time.time()
        try:
            self._execute_all_steps()
        except TaskAbortedError:
            self.status_log.add_status("Task aborted")
        except Exception as e:
            self.logger.exception("Unhandled error in task worker")
            self.status_log.add_error(f"Error executing tasks: {e}")
        finally:
            self.duration = time.time() - start_time
            self.status_log.add_status(f"Task finished in {self.duration:.1f}s")
            self._done_event.set()

    def _execute_all_steps(self) -> None:
        log_section(f"{self.command} task")
        self.status_log.add_status_header(f"Starting {self.command} task")

        sources: Dict[ContentKind, Optional[Path]] = {}
        if self.flags['upload_datasources'] or self.flags['upload_workbooks']:
            try:
                sources = self._validate_import_source()
            except DirectoryValidationError as e:
                self.status_log.add_error(str(e))
                return

        self._checkpoint()
        if not self._sign_in():
            return

        try:
            self._execute_signed_in_steps(sources)
        finally:
            self.client.sign_out()
            self.status_log.add_status("Signed out")

    def _execute_signed_in_steps(self, sources: Dict[ContentKind, Optional[Path]]) -> None:
        flags = self.flags

        for command in get_nested(self.config, 'task.custom_requests', []) or []:
            self._run_step('custom_request', self._execute_custom_request, command)

        project_to_create = get_nested(self.config, 'task.create_project', '')
        if project_to_create:
            self._run_step('create_project', self._execute_create_project, project_to_create)

        if flags['get_users']:
            self._run_step('users', self._execute_users)

        if flags['get_site_info']:
            self._run_step('site_info', self._execute_site_info)

        project_filter_name = get_nested(self.config, 'export.project', '')
        if flags['get_projects'] or flags['download_into_projects'] or project_filter_name:
            self._run_step('projects', self._execute_projects)

        if flags['get_groups']:
            self._run_step('groups', self._execute_groups)

        if flags['get_datasources_list']:
            self._run_step('datasources_list', self._execute_datasources_list)

        criteria = self._build_filter_criteria(project_filter_name)

        if flags['download_datasources']:
            self._run_step('datasources_download', self._execute_download, ContentKind.DATASOURCE, criteria)

        if flags['download_workbooks']:
            self._run_step('workbooks_download', self._execute_download, ContentKind.WORKBOOK, criteria)

        if flags['get_workbooks_list'] or flags['get_workbooks_connections']:
            self._run_step('workbooks_list', self._execute_workbooks_list)

        if flags['upload_datasources'] or flags['upload_workbooks']:
            self._run_step('upload', self._execute_uploads, sources)

        self._checkpoint()
        self._write_outputs()

    def _checkpoint(self) -> None:
        if self._abort_event.is_set():
            raise TaskAbortedError()

    def _run_step(self, name: str, step: Callable[..., Any], *args) -> Any:
        """Run one step, recording its failure without stopping the task."""
        self._checkpoint()
        started = time.time()
        try:
            result = step(*args)
        except TaskAbortedError:
            raise
        except Exception as e:
            self.logger.exception(f"Step '{name}' failed")
            self.status_log.add_error(f"{name} failed: {e}")
            self.phase_stats.setdefault(name, {}).update({'failed': True, 'error': str(e)})
            return None
        self.phase_stats.setdefault(name, {})['duration'] = round(time.time() - started, 2)
        return result

    def _validate_import_source(self) -> Dict[ContentKind, Optional[Path]]:
        source = get_nested(self.config, 'import.source_directory', '')
        kinds = []
        if self.flags['upload_datasources']:
            kinds.append(ContentKind.DATASOURCE)
        if self.flags['upload_workbooks']:
            kinds.append(ContentKind.WORKBOOK)
        sources = validate_source_directory(Path(source) if source else None, kinds)
        self.status_log.add_status(f"Import source validated: {source}")
        return sources

    def _sign_in(self) -> bool:
        self.status_log.add_status_header("Sign in")
        try:
            if self.client is None:
                self.client = ServerClient.from_config(self.config)
            signed_in = self.client.sign_in(
                get_nested(self.config, 'server.username', ''),
                get_nested(self.config, 'server.password', '')
            )
        except (AuthenticationFailure, UnrecognizedUrlFormatError) as e:
            self.status_log.add_error(f"Sign in failed: {e}")
            return False

        if not signed_in:
            self.status_log.add_error("Sign in failed: server did not return a complete session")
            return False

        self.status_log.add_status(
            f"Signed in to {self.client.urls.server_url}, site '{self.client.urls.site_segment}'"
        )
        self._fetcher = ApiFetcher(
            self.client,
            self.status_log,
            page_size=get_nested(self.config, 'advanced.page_size', None)
        )
        return True

    def _execute_custom_request(self, command: str) -> None:
        url = self.client.urls.build_custom(command)
        self.status_log.add_status(f"GET {url}")
        try:
            result = self.client.custom_get(url)
        except ServerRequestError as e:
            self.status_log.add_error(f"GET {url} failed: {e}")
            return
        if len(result) > CUSTOM_RESULT_MAX_CHARS:
            result = result[:CUSTOM_RESULT_MAX_CHARS] + "..."
        self.status_log.add_status(f"GET result: {result}")

    def _execute_create_project(self, name: str) -> None:
        project = self._fetcher.create_project(name)
        self.phase_stats['create_project'] = {'project_id': project.id, 'name': project.name}

    def _execute_users(self) -> None:
        self.status_log.add_status_header("Download users")
        self.users = self._fetcher.fetch_users()
        self.phase_stats['users'] = {'count': len(self.users)}

    def _execute_site_info(self) -> None:
        self.site_info = self._fetcher.fetch_site_info()
        if self.site_info is not None:
            self.status_log.add_status(
                f"Site: {self.site_info.name} ({self.site_info.id}), state {self.site_info.state}"
            )

    def _execute_projects(self) -> None:
        self.status_log.add_status_header("Download projects")
        self.projects = self._fetcher.fetch_projects()
        self.phase_stats['projects'] = {'count': len(self.projects)}

    def _execute_groups(self) -> None:
        self.status_log.add_status_header("Download groups")
        self.groups = self._fetcher.fetch_groups(include_members=True)
        self.phase_stats['groups'] = {
            'count': len(self.groups),
            'members': sum(len(group.users) for group in self.groups)
        }

    def _execute_datasources_list(self) -> None:
        self.status_log.add_status_header("Download data sources list")
        self.datasources = self._fetcher.fetch_datasources()
        self.phase_stats['datasources_list'] = {'count': len(self.datasources)}

    def _build_filter_criteria(self, project_filter_name: str) -> FilterCriteria:
        if not project_filter_name:
            return FilterCriteria.from_config(self.config)

        for project in self.projects:
            if project.name == project_filter_name:
                self.status_log.add_status(f"Project filter: {project.name} ({project.id})")
                return FilterCriteria.from_config(self.config, project.id)

        if self.flags['download_datasources'] or self.flags['download_workbooks']:
            self.status_log.add_error(f"Project filter '{project_filter_name}' not found on site")
        self._project_filter_missing = True
        return FilterCriteria.from_config(self.config)

    def _execute_download(self, kind: ContentKind, criteria: FilterCriteria) -> None:
        label = kind.collection
        self.status_log.add_status_header(f"Download {label}")
        if self._project_filter_missing:
            self.status_log.add_status(f"Skipping {label} download, project filter did not match")
            return

        if kind is ContentKind.DATASOURCE:
            items = self.datasources or self._fetcher.fetch_datasources()
            self.datasources = items
        else:
            items = self._fetcher.fetch_workbooks()
            self.workbooks = items

        selected = apply_filters(items, criteria, self.status_log, label)
        output_dir = Path(get_nested(self.config, 'export.output_directory', '.'))
        exporter = ContentExporter(
            self.client,
            self.status_log,
            output_dir,
            abort_event=self._abort_event,
            show_progress=bool(get_nested(self.config, 'advanced.show_progress', False))
        )
        projects = self.projects if self.flags['download_into_projects'] else None
        exported = exporter.export_items(selected, projects)

        stats = {
            'available': len(items),
            'selected': len(selected),
            'exported': exporter.stats['exported'],
            'failed': exporter.stats['failed'],
        }
        if criteria.delete_tag_after_match and criteria.has_tag:
            remover = TagRemover(self.client, self.status_log, self._abort_event)
            stats['tags_removed'] = remover.remove_tag_from_items(exported, criteria.tag)
        self.phase_stats[f'{label}_download'] = stats

    def _execute_workbooks_list(self) -> None:
        self.status_log.add_status_header("Download workbooks list")
        if not self.workbooks:
            self.workbooks = self._fetcher.fetch_workbooks()
        stats: Dict[str, Any] = {'count': len(self.workbooks)}

        if self.flags['get_workbooks_connections']:
            self.status_log.add_status("Download workbook connections")
            failed = 0
            for workbook in self.workbooks:
                self._checkpoint()
                try:
                    workbook.attach_connections(self._fetcher.fetch_connections(workbook))
                except FetcherError as e:
                    failed += 1
                    self.status_log.add_error(str(e))
            stats['connections_failed'] = failed

        self.phase_stats['workbooks_list'] = stats

    def _execute_uploads(self, sources: Dict[ContentKind, Optional[Path]]) -> None:
        if not self.projects:
            self.projects = self._fetcher.fetch_projects()

        behavior = UploadBehaviorProjects(
            attempt_create=bool(get_nested(self.config, 'import.create_missing_projects', True)),
            use_default_if_missing=bool(get_nested(self.config, 'import.use_default_project', True))
        )
        resolver = ProjectResolver(
            self._fetcher, self.projects, behavior, self.manual_actions, self.status_log
        )
        remap = bool(get_nested(self.config, 'import.remap_workbook_references', False))
        remapper = None
        if remap:
            urls = self.client.urls
            remapper = WorkbookReferenceRemapper(urls.server_name, urls.site_segment, urls.protocol)

        importer = ContentImporter(
            self.client,
            resolver,
            self.status_log,
            self.manual_actions,
            chunk_size=get_nested(self.config, 'upload.chunk_size', 8000000),
            chunk_delay=get_nested(self.config, 'upload.chunk_delay', 0) or 0,
            remapper=remapper,
            abort_event=self._abort_event,
            show_progress=bool(get_nested(self.config, 'advanced.show_progress', False))
        )

        stats: Dict[str, Any] = {}
        if self.flags['upload_datasources']:
            self.status_log.add_status_header("Upload data sources")
            directory = sources.get(ContentKind.DATASOURCE)
            if directory is None:
                self.status_log.add_status("Skipping data sources upload, local directory does not exist")
            else:
                stats['datasources_uploaded'] = importer.upload_datasources(directory)

        self._checkpoint()
        if self.flags['upload_workbooks']:
            self.status_log.add_status_header("Upload workbooks")
            directory = sources.get(ContentKind.WORKBOOK)
            if directory is None:
                self.status_log.add_status("Skipping workbooks upload, local directory does not exist")
            else:
                try:
                    stats['workbooks_uploaded'] = importer.upload_workbooks(directory, remap=remap)
                finally:
                    if remap:
                        clear_workspace(directory / REMAP_WORKSPACE_DIRECTORY)

        stats['failed'] = importer.stats['failed']
        stats['skipped'] = importer.stats['skipped']
        stats['manual_actions'] = len(self.manual_actions)
        self.phase_stats['upload'] = stats

    def _write_outputs(self) -> None:
        output = self.config.get('output') or {}

        if output.get('inventory_file'):
            self._run_step('inventory_file', self._write_inventory, Path(output['inventory_file']))

        if output.get('manual_steps_file'):
            self._run_step('manual_steps_file', self._write_manual_steps, Path(output['manual_steps_file']))

        if output.get('log_file'):
            self._run_step(
                'log_file', lambda path: self.report.write_text(path, self.status_log.status_text()),
                Path(output['log_file'])
            )

        if output.get('errors_file'):
            self._run_step(
                'errors_file', lambda path: self.report.write_text(path, self.status_log.error_text()),
                Path(output['errors_file'])
            )

    def _write_inventory(self, path: Path) -> None:
        rows = self.report.write_site_inventory(
            path, self.site_info, self.projects, self.users,
            self.groups, self.datasources, self.workbooks
        )
        self.status_log.add_status(f"Site inventory written: {path} ({rows} rows)")

    def _write_manual_steps(self, path: Path) -> None:
        if self.report.write_manual_steps(path, self.manual_actions.actions):
            self.status_log.add_status(f"Manual steps written: {path}")
        else:
            self.status_log.add_status("No manual steps to write")

    def generate_report(self) -> Dict[str, Any]:
        """Summary of the run for console display or JSON export."""
        return self.report.generate_report(
            self.command,
            self.phase_stats,
            self.duration,
            self.status_log.error_count,
            manual_action_count=len(self.manual_actions),
            aborted=self.abort_requested
        )


__all__ = ['MigrationOrchestrator', 'TaskAbortedError']
