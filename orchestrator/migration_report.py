"""
Migration report writer.

Writes the output files of a task run (site inventory CSV, manual steps
CSV, status log and error log) and builds a summary of the phase
statistics for console display and JSON export.
"""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from logger import format_elapsed
from models import ContentItem, Datasource, Group, ManualAction, Project, SiteInfo, User, Workbook

INVENTORY_COLUMNS = [
    'content_type',
    'id',
    'name',
    'project_id',
    'project_name',
    'owner_id',
    'content_url',
    'tags',
    'site_role',
    'last_login',
    'group_name',
    'connection_type',
    'server_address',
    'server_port',
    'connection_user',
]

MANUAL_STEPS_COLUMNS = ['content_kind', 'name', 'project_name', 'action']


class MigrationReport:
    """Writes task output files and summarizes phase statistics."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize migration report writer.

        Args:
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger('tableau_site_migrator.report')

    def write_site_inventory(
        self,
        path: Path,
        site_info: Optional[SiteInfo],
        projects: Sequence[Project],
        users: Sequence[User],
        groups: Sequence[Group],
        datasources: Sequence[Datasource],
        workbooks: Sequence[Workbook]
    ) -> int:
        """
        Write one CSV row per downloaded record.

        Groups get one row per member (or a single row when empty) and
        workbooks and data sources one row per connection when their
        connections were downloaded.

        Args:
            path: Target CSV file
            site_info: Site details, if downloaded
            projects: Downloaded projects
            users: Downloaded users
            groups: Downloaded groups with members
            datasources: Downloaded data sources
            workbooks: Downloaded workbooks

        Returns:
            Number of data rows written
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        rows: List[Dict[str, Any]] = []
        if site_info is not None:
            rows.append({
                'content_type': 'site',
                'id': site_info.id,
                'name': site_info.name,
                'content_url': site_info.content_url,
            })
        for project in projects:
            rows.append({'content_type': 'project', 'id': project.id, 'name': project.name})
        for user in users:
            rows.append({
                'content_type': 'user',
                'id': user.id,
                'name': user.name,
                'site_role': user.site_role,
                'last_login': user.last_login,
            })
        for group in groups:
            rows.extend(self._group_rows(group))
        for item in list(datasources) + list(workbooks):
            rows.extend(self._content_rows(item))

        with open(path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=INVENTORY_COLUMNS, restval='')
            writer.writeheader()
            writer.writerows(rows)

        self.logger.info(f"Site inventory written to {path} ({len(rows)} rows)")
        return len(rows)

    def write_manual_steps(self, path: Path, actions: Iterable[ManualAction]) -> bool:
        """
        Write the manual follow-up steps CSV.

        Returns:
            False (and writes nothing) when there are no steps
        """
        actions = list(actions)
        if not actions:
            return False

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=MANUAL_STEPS_COLUMNS)
            writer.writeheader()
            for action in actions:
                writer.writerow(action.to_dict())

        self.logger.info(f"Manual steps written to {path} ({len(actions)} steps)")
        return True

    def write_text(self, path: Path, text: str) -> None:
        """Write a status or error log snapshot."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding='utf-8')
        self.logger.debug(f"Wrote {len(text)} characters to {path}")

    def generate_report(
        self,
        command: str,
        phase_stats: Dict[str, Any],
        duration: float,
        error_count: int,
        manual_action_count: int = 0,
        aborted: bool = False
    ) -> Dict[str, Any]:
        """
        Build the run summary.

        Args:
            command: Task command that ran
            phase_stats: Statistics collected per step
            duration: Run time in seconds
            error_count: Entries in the task error log
            manual_action_count: Manual steps recorded
            aborted: Whether the run was aborted

        Returns:
            Report dictionary
        """
        failed_steps = [name for name, stats in phase_stats.items() if stats.get('failed')]
        return {
            'summary': {
                'command': command,
                'duration_seconds': duration,
                'duration_formatted': format_elapsed(duration),
                'errors': error_count,
                'manual_actions': manual_action_count,
                'failed_steps': failed_steps,
                'aborted': aborted,
            },
            'phases': phase_stats,
            'timestamp': datetime.now().isoformat()
        }

    def format_console_report(self, report: Dict[str, Any]) -> str:
        summary = report.get('summary', {})
        lines = [
            "",
            "=" * 60,
            f"  Task summary: {summary.get('command', '')}",
            "=" * 60,
            f"  Duration:        {summary.get('duration_formatted', '')}",
            f"  Errors:          {summary.get('errors', 0)}",
            f"  Manual actions:  {summary.get('manual_actions', 0)}",
        ]
        if summary.get('aborted'):
            lines.append("  Status:          ABORTED")

        phases = report.get('phases', {})
        if phases:
            lines.append("")
            lines.append("  Steps:")
            for name, stats in phases.items():
                details = ", ".join(
                    f"{key}={value}" for key, value in stats.items()
                    if key not in ('errors', 'error') and not isinstance(value, (list, dict))
                )
                lines.append(f"    {name}: {details}")
                if stats.get('error'):
                    lines.append(f"      error: {stats['error']}")

        lines.append("=" * 60)
        return "\n".join(lines)

    def export_json_report(self, report: Dict[str, Any], filepath: Path) -> None:
        """
        Export report to JSON file.

        Args:
            report: Report dictionary
            filepath: Output file path
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, default=str)
        self.logger.info(f"JSON report exported to {filepath}")

    @staticmethod
    def _group_rows(group: Group) -> List[Dict[str, Any]]:
        base = {'content_type': 'group', 'id': group.id, 'group_name': group.name}
        if not group.users:
            return [dict(base, name='')]
        return [dict(base, name=user.name) for user in group.users]

    @staticmethod
    def _content_rows(item: ContentItem) -> List[Dict[str, Any]]:
        base = {
            'content_type': item.kind.value,
            'id': item.id,
            'name': item.name,
            'project_id': item.project_id,
            'project_name': item.project_name,
            'owner_id': item.owner_id,
            'content_url': item.content_url,
            'tags': ";".join(item.tags),
        }
        if not item.connections:
            return [base]
        return [
            dict(
                base,
                connection_type=connection.connection_type,
                server_address=connection.server_address,
                server_port=connection.server_port,
                connection_user=connection.user_name
            )
            for connection in item.connections
        ]


__all__ = ['INVENTORY_COLUMNS', 'MANUAL_STEPS_COLUMNS', 'MigrationReport']
