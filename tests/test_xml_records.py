"""Tests for XML record decoding."""

import pytest

from converters.xml_records import (
    PaginationSummary,
    RecordParseError,
    build_publish_request,
    build_signin_request,
    find_error,
    iter_records,
    parse_datasource,
    parse_pagination,
    parse_upload_session_id,
    parse_workbook,
)


class TestContentRecords:
    """Test workbook and data source decoding."""

    def test_workbook_fields(self, ts_document):
        document = ts_document(
            '<workbooks><workbook id="wb-1" name="Sales" contentUrl="Sales" showTabs="true">'
            '<project id="p-1" name="Finance"/><owner id="u-9"/>'
            '<tags><tag label="migrate"/><tag label="q3"/><tag label="migrate"/></tags>'
            '</workbook></workbooks>'
        )

        workbook = parse_workbook(iter_records(document, 'workbook')[0])

        assert workbook.id == 'wb-1'
        assert workbook.project_id == 'p-1'
        assert workbook.project_name == 'Finance'
        assert workbook.owner_id == 'u-9'
        assert workbook.show_tabs is True
        assert workbook.tags == ('migrate', 'q3')
        assert workbook.connections is None

    def test_datasource_without_tags(self, ts_document):
        document = ts_document('<datasource id="ds-1" name="Orders" type="sqlserver"><project id="p-1"/></datasource>')

        datasource = parse_datasource(iter_records(document, 'datasource')[0])

        assert datasource.tags == ()
        assert datasource.datasource_type == 'sqlserver'

    def test_missing_id_raises(self, ts_document):
        document = ts_document('<datasource name="Orders"/>')

        with pytest.raises(RecordParseError) as exc_info:
            parse_datasource(iter_records(document, 'datasource')[0])

        assert exc_info.value.record_type == 'datasource'


class TestPagination:
    """Test pagination summaries."""

    @pytest.mark.parametrize("total, page_size, expected", [
        (0, 100, 1),
        (1, 100, 1),
        (100, 100, 1),
        (101, 100, 2),
        (2501, 1000, 3),
    ])
    def test_total_pages_rounds_up(self, total, page_size, expected):
        assert PaginationSummary(1, page_size, total).total_pages(page_size) == expected

    def test_parse_pagination(self, ts_document):
        document = ts_document('<pagination pageNumber="2" pageSize="10" totalAvailable="25"/>')

        summary = parse_pagination(document)

        assert summary == PaginationSummary(2, 10, 25)
        assert summary.total_pages(1000) == 3

    def test_bad_pagination_raises(self, ts_document):
        with pytest.raises(RecordParseError):
            parse_pagination(ts_document('<pagination pageNumber="x" pageSize="10" totalAvailable="25"/>'))

    def test_no_pagination(self, ts_document):
        assert parse_pagination(ts_document('<projects/>')) is None


class TestMisc:

    def test_find_error(self, ts_document):
        document = ts_document('<error code="403"><summary>Forbidden</summary><detail>No access</detail></error>')
        assert find_error(document) == "403: Forbidden - No access"

    def test_upload_session_id(self, ts_document):
        document = ts_document('<fileUpload uploadSessionId="up-7" fileSize="0"/>')
        assert parse_upload_session_id(document) == 'up-7'

    def test_signin_request_escapes_values(self):
        payload = build_signin_request('a"b', 'p<w&d', '')
        assert 'name="a&quot;b"' in payload
        assert 'password="p&lt;w&amp;d"' in payload
        assert 'contentUrl=""' in payload

    def test_publish_request_show_tabs(self):
        payload = build_publish_request('workbook', 'Sales', 'p-1', show_tabs=False)
        assert '<workbook name="Sales" showTabs="false">' in payload
        assert '<project id="p-1" />' in payload
