"""Site REST API client: sign-in session, signed requests and retry logic."""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import requests
import urllib3
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from converters.xml_records import (
    build_signin_request,
    find_error,
    parse_credentials,
    parse_document,
)
from server_urls import ServerUrls

logger = logging.getLogger('tableau_site_migrator.client')

AUTH_HEADER = 'X-Tableau-Auth'
XML_CONTENT_TYPE = 'text/xml'


def _enable_system_ca() -> None:
    """Use the operating system trust store when USE_SYSTEM_CA is set."""
    if os.getenv('USE_SYSTEM_CA') in ('1', 'true', 'True', 'TRUE'):
        import truststore
        truststore.inject_into_ssl()
        logger.info("Using system CA certificate store")


class AuthenticationFailure(Exception):
    """Sign-in could not be completed (transport error or rejected credentials)."""


class NotSignedInError(RuntimeError):
    """A signed request was attempted without an authenticated session."""


class ServerRequestError(Exception):
    """A request failed at the transport level or returned an error status."""

    def __init__(
        self,
        method: str,
        url: str,
        status_code: Optional[int] = None,
        detail: str = ''
    ):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.detail = detail
        status = status_code if status_code is not None else "no response"
        message = f"{method} {url} failed ({status})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


@dataclass(frozen=True)
class SessionInfo:
    """Result of one successful sign-in. Read-only for the rest of the run."""

    server_base_url: str
    site_segment: str
    auth_token: str
    site_id: str
    user_id: str

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token and self.site_id and self.user_id)


class ServerClient:
    """REST client holding the single authenticated session of a migration run."""

    def __init__(
        self,
        urls: ServerUrls,
        verify_ssl: bool = True,
        request_timeout: float = 60,
        download_timeout: float = 900,
        max_retries: int = 3,
        retry_backoff_factor: float = 2.0,
        rate_limit: float = 0.0
    ):
        """
        Initialize the client and its HTTP session.

        Args:
            urls: Endpoint builder for the target server and site
            verify_ssl: Whether to verify SSL certificates
            request_timeout: Timeout in seconds for metadata requests
            download_timeout: Timeout in seconds for content downloads and uploads
            max_retries: Retry attempts for idempotent requests on transient errors
            retry_backoff_factor: Exponential backoff factor between retries
            rate_limit: Minimum seconds between requests (0.0 = no rate limiting)
        """
        self.urls = urls
        self.request_timeout = request_timeout
        self.download_timeout = download_timeout
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor
        self.rate_limit = rate_limit
        self.last_request_time = 0.0
        self._session_info: Optional[SessionInfo] = None

        self.session = requests.Session()
        self.session.verify = verify_ssl
        if not verify_ssl:
            logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        # Only idempotent requests are retried; upload chunks must never be replayed
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        logger.debug(f"Client configured for {urls.server_url} with timeout={request_timeout}s, "
                     f"download_timeout={download_timeout}s, max_retries={max_retries}")

    @property
    def session_info(self) -> Optional[SessionInfo]:
        return self._session_info

    @property
    def is_signed_in(self) -> bool:
        return self._session_info is not None and self._session_info.is_authenticated

    @property
    def site_id(self) -> str:
        return self._require_session().site_id

    @property
    def user_id(self) -> str:
        return self._require_session().user_id

    def sign_in(self, username: str, password: str) -> bool:
        """
        Authenticate against the site named by the endpoint builder.

        A well-formed response that lacks the user id is treated as a failed
        sign-in; some servers answer that way for accounts that do not exist.

        Args:
            username: Account name
            password: Account password

        Returns:
            True if the session is now authenticated, False otherwise

        Raises:
            AuthenticationFailure: If the request could not be made or was rejected
        """
        url = self.urls.login_url
        logger.info(f"Signing in to {url} as '{username}' (site '{self.urls.site_segment}')")

        payload = build_signin_request(username, password, self.urls.site_segment)
        try:
            response = self._make_request(
                'POST', url, signed=False,
                data=payload.encode('utf-8'),
                headers={'Content-Type': XML_CONTENT_TYPE}
            )
        except ServerRequestError as e:
            raise AuthenticationFailure(f"Sign in failed: {e}") from e

        token, site_id, user_id = parse_credentials(parse_document(response.content))
        if not token or not site_id:
            logger.error("Sign in response did not contain a token and site id")
            return False
        if not user_id:
            logger.error("Sign in response did not contain a user id, treating as failed sign in")
            return False

        self._session_info = SessionInfo(
            server_base_url=self.urls.server_url,
            site_segment=self.urls.site_segment,
            auth_token=token,
            site_id=site_id,
            user_id=user_id
        )
        logger.info(f"Signed in. Site id: {site_id}, user id: {user_id}")
        return True

    def sign_out(self) -> None:
        """End the session on the server; failures are only logged."""
        if not self.is_signed_in:
            return
        try:
            self.signed_request('POST', self.urls.build('signout'))
        except ServerRequestError as e:
            logger.warning(f"Sign out failed: {e}")
        finally:
            self._session_info = None

    def signed_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Issue a request carrying the session token."""
        return self._make_request(method, url, signed=True, **kwargs)

    def get_xml(self, url: str) -> BeautifulSoup:
        """GET a signed URL and parse the XML body."""
        return parse_document(self.signed_request('GET', url).content)

    def post_xml(self, url: str, payload: Optional[str] = None) -> BeautifulSoup:
        """POST an XML payload (or an empty body) and parse the XML response."""
        kwargs: Dict[str, Any] = {}
        if payload is not None:
            kwargs['data'] = payload.encode('utf-8')
            kwargs['headers'] = {'Content-Type': XML_CONTENT_TYPE}
        return parse_document(self.signed_request('POST', url, **kwargs).content)

    def send_multipart(self, method: str, url: str, body: bytes, content_type: str) -> BeautifulSoup:
        """Send a prepared multipart body; used by the upload session."""
        response = self.signed_request(
            method, url,
            data=body,
            headers={'Content-Type': content_type},
            timeout=self.download_timeout
        )
        return parse_document(response.content)

    def delete(self, url: str) -> None:
        self.signed_request('DELETE', url)

    def open_download(self, url: str) -> requests.Response:
        """
        Start a streamed content download.

        The caller owns the returned response and must close it.
        """
        return self.signed_request('GET', url, stream=True, timeout=self.download_timeout)

    def custom_get(self, url: str) -> str:
        """Run an arbitrary signed GET, returning the body text."""
        return self.signed_request('GET', url).text

    def _require_session(self) -> SessionInfo:
        if self._session_info is None or not self._session_info.is_authenticated:
            raise NotSignedInError("Signed request attempted before a successful sign in")
        return self._session_info

    def _enforce_rate_limit(self) -> None:
        """Enforce rate limiting if configured."""
        if self.rate_limit <= 0:
            return

        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.rate_limit:
            sleep_time = self.rate_limit - time_since_last
            logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
            time.sleep(sleep_time)

    def _make_request(
        self,
        method: str,
        url: str,
        signed: bool = True,
        expected_status: Sequence[int] = (200, 201, 204),
        **kwargs
    ) -> requests.Response:
        """
        Make HTTP request with rate limiting and error handling.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            url: Absolute URL built by ServerUrls
            signed: Attach the session token header
            expected_status: Status codes treated as success
            **kwargs: Additional arguments for requests

        Returns:
            Response object

        Raises:
            NotSignedInError: If a signed request is made without a session
            ServerRequestError: For transport failures and unexpected status codes
        """
        headers = dict(kwargs.pop('headers', None) or {})
        if signed:
            headers[AUTH_HEADER] = self._require_session().auth_token
        timeout = kwargs.pop('timeout', self.request_timeout)

        self._enforce_rate_limit()

        start_time = time.time()
        logger.debug(f"API Request: {method} {url}")

        try:
            response = self.session.request(method, url, headers=headers, timeout=timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Request timeout after {timeout}s: {method} {url}")
            raise ServerRequestError(method, url, detail=f"timeout after {timeout}s") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error: {method} {url} - {str(e)}")
            raise ServerRequestError(method, url, detail=str(e)) from e
        finally:
            self.last_request_time = time.time()

        elapsed = time.time() - start_time
        logger.debug(f"API Response: {response.status_code} {url} ({elapsed:.3f}s)")

        if response.status_code not in expected_status:
            detail = find_error(parse_document(response.content or b'')) or (response.text or '')[:500]
            response.close()
            logger.error(f"HTTP Error {response.status_code}: {method} {url} {detail}")
            raise ServerRequestError(method, url, response.status_code, detail)

        return response

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ServerClient':
        """
        Initialize the client from a configuration dictionary.

        Args:
            config: Configuration dictionary with server and advanced settings

        Returns:
            ServerClient instance
        """
        _enable_system_ca()

        server_config = config.get('server', {})
        advanced_config = config.get('advanced', {})

        urls = ServerUrls.from_content_url(
            server_config.get('content_url', ''),
            page_size=advanced_config.get('page_size', 1000)
        )
        return cls(
            urls=urls,
            verify_ssl=server_config.get('verify_ssl', True),
            request_timeout=advanced_config.get('request_timeout', 60),
            download_timeout=advanced_config.get('download_timeout', 900),
            max_retries=advanced_config.get('max_retries', 3),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', 2.0),
            rate_limit=advanced_config.get('rate_limit', 0.0)
        )


__all__ = [
    'AUTH_HEADER',
    'AuthenticationFailure',
    'NotSignedInError',
    'ServerClient',
    'ServerRequestError',
    'SessionInfo'
]
