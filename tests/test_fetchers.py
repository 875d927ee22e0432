"""Tests for paginated list downloads."""

import re

import pytest

from converters.xml_records import parse_document, parse_project
from fetchers import ApiFetcher, FetcherError, PaginatedFetcher
from models import Workbook
from server_client import ServerRequestError

PAGE_NUMBER = re.compile(r'pageNumber=(\d+)')


def _projects_page(ts_response, names, page_number, total, page_size=2):
    records = "".join(f'<project id="id-{n}" name="{n}"/>' for n in names)
    return ts_response(
        f'<pagination pageNumber="{page_number}" pageSize="{page_size}" totalAvailable="{total}"/>'
        f'<projects>{records}</projects>'
    )


@pytest.fixture
def paged_client(client, ts_response):
    """Client serving five projects over three pages of two."""
    pages = {
        1: _projects_page(ts_response, ['a', 'b'], 1, 5),
        2: _projects_page(ts_response, ['c', 'd'], 2, 5),
        3: _projects_page(ts_response, ['e'], 3, 5),
    }

    def get_xml(url):
        page = int(PAGE_NUMBER.search(url).group(1))
        return parse_document(pages[page])

    client.get_xml.side_effect = get_xml
    client.pages = pages
    return client


class TestPaginatedFetcher:
    """Test the page loop."""

    def test_fetches_every_page(self, paged_client, status_log):
        fetcher = PaginatedFetcher(paged_client, status_log, page_size=2)

        projects = fetcher.fetch_all('projects-list', 'project', parse_project)

        assert [p.name for p in projects] == ['a', 'b', 'c', 'd', 'e']
        assert paged_client.get_xml.call_count == 3
        first_url = paged_client.get_xml.call_args_list[0][0][0]
        assert '/sites/site-1/projects?pageSize=2&pageNumber=1' in first_url

    def test_failed_page_is_skipped(self, paged_client, status_log):
        serve = paged_client.get_xml.side_effect

        def get_xml(url):
            if 'pageNumber=2' in url:
                raise ServerRequestError('GET', url, 500, 'boom')
            return serve(url)

        paged_client.get_xml.side_effect = get_xml
        fetcher = PaginatedFetcher(paged_client, status_log, page_size=2)

        projects = fetcher.fetch_all('projects-list', 'project', parse_project)

        assert [p.name for p in projects] == ['a', 'b', 'e']
        assert len(fetcher.page_errors) == 1
        assert fetcher.page_errors[0].page_number == 2
        assert status_log.error_count == 1

    def test_failed_first_page_ends_walk(self, paged_client, status_log):
        paged_client.get_xml.side_effect = ServerRequestError('GET', 'url', 503)
        fetcher = PaginatedFetcher(paged_client, status_log, page_size=2)

        projects = fetcher.fetch_all('projects-list', 'project', parse_project)

        assert projects == []
        assert paged_client.get_xml.call_count == 1
        assert fetcher.page_errors[0].page_number == 1
        assert status_log.error_count == 1

    def test_bad_record_is_skipped(self, client, status_log, ts_response):
        client.get_xml.return_value = parse_document(ts_response(
            '<pagination pageNumber="1" pageSize="2" totalAvailable="2"/>'
            '<projects><project name="no id"/><project id="p-2" name="ok"/></projects>'
        ))
        fetcher = PaginatedFetcher(client, status_log, page_size=2)

        projects = fetcher.fetch_all('projects-list', 'project', parse_project)

        assert [p.id for p in projects] == ['p-2']
        assert len(fetcher.record_errors) == 1

    def test_missing_pagination_means_one_page(self, client, status_log, ts_response):
        client.get_xml.return_value = parse_document(ts_response(
            '<projects><project id="p-1" name="only"/></projects>'
        ))
        fetcher = PaginatedFetcher(client, status_log, page_size=2)

        assert len(fetcher.fetch_all('projects-list', 'project', parse_project)) == 1
        assert client.get_xml.call_count == 1


class TestApiFetcher:
    """Test per-collection downloads."""

    def test_fetch_projects_logs_count(self, paged_client, status_log):
        fetcher = ApiFetcher(paged_client, status_log, page_size=2)

        projects = fetcher.fetch_projects()

        assert len(projects) == 5
        assert "Projects downloaded: 5" in status_log.status_text()

    def test_fetch_groups_with_members(self, client, status_log, ts_response):
        def get_xml(url):
            if '/groups/g-1/users' in url:
                return parse_document(ts_response(
                    '<pagination pageNumber="1" pageSize="2" totalAvailable="1"/>'
                    '<users><user id="u-1" name="ann" siteRole="Viewer"/></users>'
                ))
            return parse_document(ts_response(
                '<pagination pageNumber="1" pageSize="2" totalAvailable="1"/>'
                '<groups><group id="g-1" name="Analysts"/></groups>'
            ))

        client.get_xml.side_effect = get_xml
        fetcher = ApiFetcher(client, status_log, page_size=2)

        groups = fetcher.fetch_groups()

        assert len(groups) == 1
        assert [u.name for u in groups[0].users] == ['ann']

    def test_fetch_workbooks_uses_signed_in_user(self, client, status_log, ts_response):
        client.get_xml.return_value = parse_document(ts_response('<workbooks/>'))
        fetcher = ApiFetcher(client, status_log, page_size=2)

        fetcher.fetch_workbooks()

        assert '/users/user-1/workbooks' in client.get_xml.call_args[0][0]

    def test_fetch_connections(self, client, status_log, ts_response):
        client.get_xml.return_value = parse_document(ts_response(
            '<connections><connection id="c-1" type="sqlserver" serverAddress="db1" '
            'serverPort="1433" userName="etl"/></connections>'
        ))
        fetcher = ApiFetcher(client, status_log)

        connections = fetcher.fetch_connections(Workbook(id='wb-1', name='Sales'))

        assert connections[0].server_address == 'db1'
        assert '/workbooks/wb-1/connections' in client.get_xml.call_args[0][0]

    def test_fetch_connections_failure(self, client, status_log):
        client.get_xml.side_effect = ServerRequestError('GET', 'url', 500)
        fetcher = ApiFetcher(client, status_log)

        with pytest.raises(FetcherError):
            fetcher.fetch_connections(Workbook(id='wb-1', name='Sales'))

    def test_create_project(self, client, status_log, ts_response):
        client.post_xml.return_value = parse_document(ts_response('<project id="p-9" name="New"/>'))
        fetcher = ApiFetcher(client, status_log)

        project = fetcher.create_project('New')

        assert project.id == 'p-9'
        url, payload = client.post_xml.call_args[0]
        assert url.endswith('/sites/site-1/projects')
        assert 'name="New"' in payload
