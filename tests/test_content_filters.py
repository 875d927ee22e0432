"""Tests for project and tag filters."""

import pytest

from fetchers import apply_filters, filter_by_project, filter_by_tag
from models import Datasource, FilterCriteria


@pytest.fixture
def datasources():
    return [
        Datasource(id='d1', name='Orders', project_id='p1', tags=('migrate',)),
        Datasource(id='d2', name='Returns', project_id='p2', tags=('migrate', 'old')),
        Datasource(id='d3', name='Budget', project_id='p1', tags=()),
    ]


class TestFilterByProject:

    @pytest.mark.parametrize("project_id", [None, ""])
    def test_empty_value_is_identity(self, datasources, project_id):
        result = filter_by_project(datasources, project_id)

        assert result == datasources
        assert result is not datasources

    def test_keeps_matching_project_in_order(self, datasources):
        assert [d.id for d in filter_by_project(datasources, 'p1')] == ['d1', 'd3']

    def test_unknown_project_matches_nothing(self, datasources):
        assert filter_by_project(datasources, 'p-missing') == []


class TestFilterByTag:

    def test_empty_value_is_identity(self, datasources):
        assert filter_by_tag(datasources, None) == datasources

    def test_exact_case_sensitive_match(self, datasources):
        assert [d.id for d in filter_by_tag(datasources, 'migrate')] == ['d1', 'd2']
        assert filter_by_tag(datasources, 'Migrate') == []


class TestApplyFilters:

    def test_both_filters_and_log_lines(self, datasources, status_log):
        result = apply_filters(datasources, FilterCriteria(project_id='p1', tag='migrate'), status_log, 'datasources')

        assert [d.id for d in result] == ['d1']
        text = status_log.status_text()
        assert "Download datasources count before filters: 3" in text
        assert "Download datasources count after projects filter: 2" in text
        assert "Download datasources count after tags filter: 1" in text

    def test_input_is_not_modified(self, datasources):
        before = list(datasources)
        apply_filters(datasources, FilterCriteria(tag='old'))
        assert datasources == before


class TestFilterCriteriaFromConfig:

    def test_reads_export_section(self):
        config = {'export': {'tag': 'migrate', 'remove_tag_after_export': True, 'project': 'Finance'}}

        criteria = FilterCriteria.from_config(config, 'p1')

        assert criteria == FilterCriteria(project_id='p1', tag='migrate', delete_tag_after_match=True)

    def test_empty_values_disable_filters(self):
        criteria = FilterCriteria.from_config({'export': {'tag': ''}})

        assert criteria.project_id is None
        assert criteria.tag is None
        assert not criteria.has_tag
        assert criteria.delete_tag_after_match is False
