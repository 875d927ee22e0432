"""Converters package for decoding site REST API XML into model objects."""

from .xml_records import (
    PaginationSummary,
    RecordParseError,
    build_create_project_request,
    build_publish_request,
    build_signin_request,
    find_error,
    iter_records,
    parse_connection,
    parse_credentials,
    parse_datasource,
    parse_document,
    parse_group,
    parse_pagination,
    parse_project,
    parse_published_item,
    parse_site_info,
    parse_upload_session_id,
    parse_user,
    parse_workbook,
)

__all__ = [
    'PaginationSummary',
    'RecordParseError',
    'build_create_project_request',
    'build_publish_request',
    'build_signin_request',
    'find_error',
    'iter_records',
    'parse_connection',
    'parse_credentials',
    'parse_datasource',
    'parse_document',
    'parse_group',
    'parse_pagination',
    'parse_project',
    'parse_published_item',
    'parse_site_info',
    'parse_upload_session_id',
    'parse_user',
    'parse_workbook'
]
