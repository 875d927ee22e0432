"""Tests for the output files written at the end of a task."""

import csv
import json

from models import Connection, Datasource, Group, ManualAction, Project, SiteInfo, User, Workbook
from orchestrator import MigrationReport


def _read_rows(path):
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.DictReader(f))


class TestSiteInventory:

    def test_one_row_per_record(self, tmp_path):
        workbook = Workbook(id='w1', name='Sales', project_id='p1', tags=('a', 'b'))
        workbook.attach_connections([
            Connection(id='c1', connection_type='sqlserver', server_address='db1'),
            Connection(id='c2', connection_type='excel'),
        ])
        path = tmp_path / 'out' / 'inventory.csv'

        count = MigrationReport().write_site_inventory(
            path,
            SiteInfo(id='s1', name='Sales site', content_url='sales'),
            [Project(id='p1', name='Finance')],
            [User(id='u1', name='ann', site_role='Viewer')],
            [Group(id='g1', name='Analysts', users=[User(id='u1', name='ann')]), Group(id='g2', name='Empty')],
            [Datasource(id='d1', name='Orders')],
            [workbook],
        )

        rows = _read_rows(path)
        assert count == len(rows) == 8
        assert [r['content_type'] for r in rows] == [
            'site', 'project', 'user', 'group', 'group', 'datasource', 'workbook', 'workbook'
        ]
        assert rows[3]['group_name'] == 'Analysts' and rows[3]['name'] == 'ann'
        assert rows[6]['server_address'] == 'db1'
        assert rows[6]['tags'] == 'a;b'

    def test_empty_inventory_has_header(self, tmp_path):
        path = tmp_path / 'inventory.csv'

        assert MigrationReport().write_site_inventory(path, None, [], [], [], [], []) == 0
        assert path.read_text(encoding='utf-8').startswith('content_type,id,name')


class TestManualSteps:

    def test_skipped_when_empty(self, tmp_path):
        path = tmp_path / 'manual.csv'

        assert MigrationReport().write_manual_steps(path, []) is False
        assert not path.exists()

    def test_written(self, tmp_path):
        path = tmp_path / 'manual.csv'
        action = ManualAction('workbook', 'Sales', 'Marketing', 'Move it')

        assert MigrationReport().write_manual_steps(path, [action]) is True
        assert _read_rows(path) == [action.to_dict()]


class TestSummary:

    def test_generate_and_export(self, tmp_path):
        report_writer = MigrationReport()
        phase_stats = {
            'projects': {'count': 3, 'duration': 0.2},
            'groups': {'failed': True, 'error': 'boom'},
        }

        report = report_writer.generate_report('inventory', phase_stats, 75.0, error_count=1)

        assert report['summary']['failed_steps'] == ['groups']
        assert report['summary']['duration_formatted'] == '1m 15s'
        text = report_writer.format_console_report(report)
        assert 'projects: count=3' in text
        assert 'error: boom' in text

        path = tmp_path / 'report.json'
        report_writer.export_json_report(report, path)
        assert json.loads(path.read_text())['summary']['errors'] == 1
