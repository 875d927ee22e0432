"""Tests for endpoint templates and content URL parsing."""

import pytest

from server_urls import (
    ServerFlavor,
    ServerUrls,
    TemplateIncompleteError,
    UnrecognizedUrlFormatError,
)


class TestFromContentUrl:
    """Test parsing of URLs copied from the browser."""

    def test_site_url(self):
        urls = ServerUrls.from_content_url("https://tableau.example.com/#/site/sales/workbooks")

        assert urls.protocol == "https://"
        assert urls.server_name == "tableau.example.com"
        assert urls.site_segment == "sales"
        assert urls.server_flavor is ServerFlavor.SERVER9

    def test_default_site_url(self):
        urls = ServerUrls.from_content_url("https://tableau.example.com/#/")

        assert urls.site_segment == ""
        assert urls.server_url == "https://tableau.example.com"

    def test_legacy_site_url_is_accepted(self):
        urls = ServerUrls.from_content_url("http://tableau.example.com/t/finance/views/Sales")

        assert urls.protocol == "http://"
        assert urls.site_segment == "finance"
        assert urls.server_flavor is ServerFlavor.SERVER8

    def test_page_size_is_kept(self):
        urls = ServerUrls.from_content_url("https://tableau.example.com/#/", page_size=50)
        assert urls.page_size == 50

    @pytest.mark.parametrize("url", [
        "https://tableau.example.com/views/Sales",
        "tableau.example.com/#/site/sales",
        "https:///#/site/sales",
        "",
    ])
    def test_unrecognized_urls(self, url):
        with pytest.raises(UnrecognizedUrlFormatError):
            ServerUrls.from_content_url(url)


class TestBuild:
    """Test template substitution."""

    def test_all_placeholders_substituted(self, urls):
        url = urls.build('projects-list', SiteId='abc', PageSize=2, PageNumber=3)
        assert url == "https://tableau.example.com/api/2.0/sites/abc/projects?pageSize=2&pageNumber=3"

    def test_missing_placeholder_raises(self, urls):
        with pytest.raises(TemplateIncompleteError) as exc_info:
            urls.build('projects-list', SiteId='abc')

        assert exc_info.value.template_key == 'projects-list'
        assert '{{iwsPageSize}}' in exc_info.value.url

    def test_values_are_url_quoted(self, urls):
        url = urls.build('workbook-tag-delete', SiteId='s', WorkbookId='w', TagText='to migrate/now')
        assert url.endswith("/workbooks/w/tags/to%20migrate%2Fnow")

    def test_unknown_template(self, urls):
        with pytest.raises(ValueError):
            urls.build('no-such-template')

    def test_login_url(self, urls):
        assert urls.login_url == "https://tableau.example.com/api/2.0/auth/signin"

    def test_build_list_page(self, urls):
        url = urls.build('users-list', SiteId='abc', PageSize=2, PageNumber=4)
        assert url.endswith("/sites/abc/users?pageSize=2&pageNumber=4")

    def test_build_custom_relative_and_absolute(self, urls):
        assert urls.build_custom("/api/2.0/serverinfo") == "https://tableau.example.com/api/2.0/serverinfo"
        assert urls.build_custom("api/2.0/serverinfo") == "https://tableau.example.com/api/2.0/serverinfo"
        assert urls.build_custom("https://other/api") == "https://other/api"
