"""Tests for downloads, the export loop and tag removal."""

import threading
from unittest.mock import patch

import pytest

from exporters import (
    DATASOURCE_PAYLOAD_TYPES,
    WORKBOOK_PAYLOAD_TYPES,
    ContentExporter,
    DownloadError,
    DownloadManager,
    TagRemover,
    ensure_project_path,
    generate_safe_filename,
)
from models import Datasource, Project, Workbook
from server_client import NotSignedInError, ServerRequestError
from server_urls import TemplateIncompleteError


class TestPayloadTypes:

    @pytest.mark.parametrize("content_type, expected", [
        ('application/octet-stream', 'tdsx'),
        ('application/zip', 'tdsx'),
        ('application/xml; charset=utf-8', 'tds'),
        ('text/xml', 'tds'),
    ])
    def test_datasource_extensions(self, content_type, expected):
        assert DATASOURCE_PAYLOAD_TYPES.extension_for(content_type) == expected

    def test_workbook_extensions(self):
        assert WORKBOOK_PAYLOAD_TYPES.extension_for('application/octet-stream') == 'twbx'
        assert WORKBOOK_PAYLOAD_TYPES.extension_for('application/xml') == 'twb'

    @pytest.mark.parametrize("content_type", [None, '', 'text/html'])
    def test_unknown_content_type(self, content_type):
        with pytest.raises(DownloadError):
            WORKBOOK_PAYLOAD_TYPES.extension_for(content_type)


class TestFilenames:

    def test_unsafe_characters_replaced(self):
        assert generate_safe_filename('Sales/Q3: "final"?') == 'Sales-SLASH-Q3-COLON- -QUOTE-final-QUOTE--QQQ-'

    def test_project_path_created(self, tmp_path, status_log):
        projects = [Project(id='p1', name='Finance/EMEA')]

        path = ensure_project_path(tmp_path, projects, 'p1', status_log)

        assert path == tmp_path / 'Finance-SLASH-EMEA'
        assert path.is_dir()

    def test_unknown_project_uses_base_path(self, tmp_path, status_log):
        path = ensure_project_path(tmp_path, [], 'p-missing', status_log)

        assert path == tmp_path
        assert status_log.error_count == 1

    def test_no_project_list(self, tmp_path):
        assert ensure_project_path(tmp_path, None, 'p1') == tmp_path


class TestDownloadManager:
    """Test streaming to disk."""

    def test_download_names_file_from_content_type(self, client, status_log, tmp_path, fake_response):
        client.open_download.return_value = fake_response(
            headers={'Content-Type': 'application/xml'}, chunks=[b'<datasource>', b'</datasource>']
        )
        manager = DownloadManager(client, status_log)

        path = manager.download('https://x/content', tmp_path, 'Orders', DATASOURCE_PAYLOAD_TYPES)

        assert path == tmp_path / 'Orders.tds'
        assert path.read_bytes() == b'<datasource></datasource>'
        assert not (tmp_path / 'Orders.tmp').exists()
        assert manager.stats['total_size_bytes'] == 25
        assert client.open_download.return_value.closed

    def test_unknown_content_type_cleans_up(self, client, status_log, tmp_path, fake_response):
        client.open_download.return_value = fake_response(headers={'Content-Type': 'text/html'}, chunks=[b'<html>'])
        manager = DownloadManager(client, status_log)

        with pytest.raises(DownloadError) as exc_info:
            manager.download('https://x/content', tmp_path, 'Orders', DATASOURCE_PAYLOAD_TYPES)

        assert exc_info.value.item_name == 'Orders'
        assert list(tmp_path.iterdir()) == []
        assert status_log.error_count == 1

    def test_existing_target_is_not_overwritten(self, client, status_log, tmp_path, fake_response):
        (tmp_path / 'Orders.tdsx').write_bytes(b'old')
        client.open_download.return_value = fake_response(
            headers={'Content-Type': 'application/octet-stream'}, chunks=[b'new']
        )
        manager = DownloadManager(client, status_log)

        with pytest.raises(FileExistsError):
            manager.download('https://x/content', tmp_path, 'Orders', DATASOURCE_PAYLOAD_TYPES)

        assert (tmp_path / 'Orders.tdsx').read_bytes() == b'old'
        assert not (tmp_path / 'Orders.tmp').exists()

    def test_request_failure_becomes_download_error(self, client, status_log, tmp_path):
        client.open_download.side_effect = ServerRequestError('GET', 'https://x/content', 404)
        manager = DownloadManager(client, status_log)

        with pytest.raises(DownloadError) as exc_info:
            manager.download('https://x/content', tmp_path, 'Orders', DATASOURCE_PAYLOAD_TYPES)

        assert exc_info.value.url == 'https://x/content'


class TestContentExporter:
    """Test the export loop."""

    @pytest.fixture
    def serving_client(self, client, fake_response):
        client.open_download.side_effect = lambda url: fake_response(
            headers={'Content-Type': 'application/octet-stream'}, chunks=[b'zip']
        )
        return client

    def test_exports_into_project_directories(self, serving_client, status_log, tmp_path):
        workbooks = [Workbook(id='w1', name='Sales', project_id='p1')]
        exporter = ContentExporter(serving_client, status_log, tmp_path)

        exported = exporter.export_items(workbooks, [Project(id='p1', name='Finance')])

        assert exported == workbooks
        assert (tmp_path / 'workbooks' / 'Finance' / 'Sales.twbx').exists()
        url = serving_client.open_download.call_args[0][0]
        assert url.endswith('/sites/site-1/workbooks/w1/content')

    def test_same_names_get_suffixes(self, serving_client, status_log, tmp_path):
        datasources = [Datasource(id='d1', name='Orders'), Datasource(id='d2', name='Orders')]
        exporter = ContentExporter(serving_client, status_log, tmp_path)

        exporter.export_items(datasources)

        target = tmp_path / 'datasources'
        assert sorted(p.name for p in target.iterdir()) == ['Orders-2.tdsx', 'Orders.tdsx']

    def test_failed_item_does_not_stop_export(self, client, status_log, tmp_path, fake_response):
        def open_download(url):
            if '/d1/' in url:
                raise ServerRequestError('GET', url, 500)
            return fake_response(headers={'Content-Type': 'application/xml'}, chunks=[b'<x/>'])

        client.open_download.side_effect = open_download
        datasources = [Datasource(id='d1', name='Broken'), Datasource(id='d2', name='Fine')]
        exporter = ContentExporter(client, status_log, tmp_path)

        exported = exporter.export_items(datasources)

        assert [d.id for d in exported] == ['d2']
        assert exporter.stats['failed'] == 1
        assert (tmp_path / 'datasources' / 'Fine.tds').exists()

    def test_abort_stops_before_next_item(self, serving_client, status_log, tmp_path):
        abort = threading.Event()
        abort.set()
        exporter = ContentExporter(serving_client, status_log, tmp_path, abort_event=abort)

        exported = exporter.export_items([Workbook(id='w1', name='Sales')])

        assert exported == []
        serving_client.open_download.assert_not_called()
        assert "Aborting workbooks download" in status_log.status_text()

    def test_request_errors_are_item_scoped(self, client, status_log, tmp_path, fake_response):
        client.open_download.side_effect = [
            NotSignedInError("Not signed in"),
            fake_response(headers={'Content-Type': 'application/octet-stream'}, chunks=[b'zip']),
        ]
        workbooks = [Workbook(id='w1', name='First'), Workbook(id='w2', name='Second'),
                     Workbook(id='w3', name='Third')]
        exporter = ContentExporter(client, status_log, tmp_path)

        build_results = [TemplateIncompleteError('workbook-download', 'url'), 'u2', 'u3']
        with patch.object(client.urls, 'build', side_effect=build_results):
            exported = exporter.export_items(workbooks)

        assert [w.id for w in exported] == ['w3']
        assert exporter.stats['failed'] == 2
        assert (tmp_path / 'workbooks' / 'Third.twbx').exists()


class TestTagRemover:

    def test_removes_tag_on_server_and_locally(self, client, status_log):
        workbook = Workbook(id='w1', name='Sales', tags=('migrate', 'keep'))

        TagRemover(client, status_log).remove_tag(workbook, 'migrate')

        assert client.delete.call_args[0][0].endswith('/sites/site-1/workbooks/w1/tags/migrate')
        assert workbook.tags == ('keep',)

    def test_failures_are_logged_and_skipped(self, client, status_log):
        def delete(url):
            if '/d1/' in url:
                raise ServerRequestError('DELETE', url, 404)

        client.delete.side_effect = delete
        items = [Datasource(id='d1', name='A', tags=('t',)), Datasource(id='d2', name='B', tags=('t',))]

        removed = TagRemover(client, status_log).remove_tag_from_items(items, 't')

        assert removed == 1
        assert items[0].tags == ('t',)
        assert items[1].tags == ()
        assert status_log.error_count == 1

    def test_signed_out_client_is_logged_per_item(self, client, status_log):
        client.delete.side_effect = NotSignedInError("Not signed in")
        items = [Workbook(id='w1', name='A', tags=('t',)), Workbook(id='w2', name='B', tags=('t',))]

        removed = TagRemover(client, status_log).remove_tag_from_items(items, 't')

        assert removed == 0
        assert client.delete.call_count == 2
        assert status_log.error_count == 2
