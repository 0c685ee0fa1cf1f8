"""
Remote store clients: WebDAV over HTTP, S3, and a dry-run stand-in.
"""
import logging
import posixpath
from typing import BinaryIO, Callable, Optional, Union
from urllib.parse import quote, urlparse

import boto3
import requests
from botocore.exceptions import ClientError
from requests.adapters import HTTPAdapter
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    before_log,
    after_log
)

from .config import EndpointConfig

logger = logging.getLogger(__name__)

Content = Union[bytes, BinaryIO]
ProgressCallback = Callable[[float], None]

RETRYABLE_STATUS_CODES = {408, 423, 429, 500, 502, 503, 504, 507}

RETRYABLE_S3_CODES = {
    'RequestTimeout',
    'RequestTimeoutException',
    'PriorRequestNotComplete',
    'ConnectionError',
    'ThrottlingException',
    'ThrottledException',
    'ServiceUnavailable',
    'SlowDown',
    'Throttling',
    'InternalError',
    '5XX'
}


def is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry.

    Args:
        exception: The exception to check

    Returns:
        True if the error is transient, False otherwise
    """
    if isinstance(exception, ClientError):
        return exception.response.get('Error', {}).get('Code') in RETRYABLE_S3_CODES
    if isinstance(exception, requests.HTTPError):
        response = exception.response
        return response is not None and response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exception, (requests.ConnectionError, requests.Timeout))


transient_retry = retry(
    retry=retry_if_exception(is_retryable_error),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before=before_log(logger, logging.DEBUG),
    after=after_log(logger, logging.DEBUG),
    reraise=True
)


class ProgressReader:
    """File-like wrapper reporting the fraction of content read so far."""

    def __init__(self, content: Content, total: int, callback: ProgressCallback):
        self._stream = content if hasattr(content, 'read') else None
        self._data = content if self._stream is None else b''
        self._offset = 0
        self.total = total
        self.callback = callback

    def __len__(self) -> int:
        return self.total

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            if self._stream is not None:
                chunk = self._stream.read()
            else:
                chunk = self._data[self._offset:]
        elif self._stream is not None:
            chunk = self._stream.read(size)
        else:
            chunk = self._data[self._offset:self._offset + size]
        self._offset += len(chunk)
        if chunk and self.total:
            self.callback(min(1.0, self._offset / self.total))
        return chunk


class WebDAVStore:
    """WebDAV client built on a pooled ``requests`` session."""

    def __init__(self, url: str, username: str, password: str, timeout: float = 300.0,
                 pool_size: int = 30, session: Optional[requests.Session] = None):
        """Initialize the WebDAV store.

        Args:
            url: Base URL of the WebDAV root
            username: Basic auth user
            password: Basic auth password
            timeout: Read timeout in seconds for every request
            pool_size: Connections kept per host, match the upload concurrency
            session: Preconfigured session, mainly for tests
        """
        self.base_url = url.rstrip('/')
        self.timeout = (10, timeout)
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        if session is None:
            adapter = HTTPAdapter(pool_connections=4, pool_maxsize=pool_size)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    def _url(self, path: str) -> str:
        return self.base_url + quote(posixpath.join('/', path))

    @transient_retry
    def exists(self, path: str) -> bool:
        response = self.session.head(self._url(path), timeout=self.timeout)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return True

    @transient_retry
    def create_directory(self, path: str) -> None:
        """Create a collection; an existing one counts as success."""
        response = self.session.request('MKCOL', self._url(path.rstrip('/') + '/'),
                                        timeout=self.timeout)
        if response.status_code == 405:
            logger.debug(f"Directory {path} already exists")
            return
        response.raise_for_status()

    def put_file_contents(self, path: str, content: Content, overwrite: bool = True,
                          content_length: Optional[int] = None,
                          on_progress: Optional[ProgressCallback] = None) -> bool:
        """Upload content to a path.

        Args:
            path: Remote path
            content: Bytes or a binary stream
            overwrite: Replace an existing object
            content_length: Size of the content in bytes
            on_progress: Called with the fraction of content sent

        Returns:
            True if stored, False if the server refused to overwrite
        """
        headers = {'Overwrite': 'T' if overwrite else 'F'}
        if content_length is not None:
            headers['Content-Length'] = str(content_length)
        body = content
        if on_progress is not None and content_length:
            body = ProgressReader(content, content_length, on_progress)

        response = self.session.put(self._url(path), data=body, headers=headers,
                                    timeout=self.timeout)
        if response.status_code == 412:
            return False
        response.raise_for_status()
        return True

    def __repr__(self) -> str:
        return f"WebDAVStore({self.base_url!r})"


class S3Store:
    """Object store backend for ``s3://bucket/prefix`` endpoints."""

    def __init__(self, url: str, username: Optional[str] = None, password: Optional[str] = None,
                 client=None):
        parsed = urlparse(url)
        if parsed.scheme != 's3' or not parsed.netloc:
            raise ValueError(f"Not an S3 URL: {url}")
        self.bucket = parsed.netloc
        self.prefix = parsed.path.strip('/')
        self.s3_client = client or boto3.client(
            's3',
            aws_access_key_id=username or None,
            aws_secret_access_key=password or None
        )

    def _key(self, path: str) -> str:
        key = path.lstrip('/')
        return f"{self.prefix}/{key}" if self.prefix else key

    @transient_retry
    def exists(self, path: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=self._key(path))
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in {'404', 'NoSuchKey', 'NotFound'}:
                return False
            raise

    def create_directory(self, path: str) -> None:
        """Prefixes are implicit in S3."""

    def put_file_contents(self, path: str, content: Content, overwrite: bool = True,
                          content_length: Optional[int] = None,
                          on_progress: Optional[ProgressCallback] = None) -> bool:
        if not overwrite and self.exists(path):
            return False

        body = content.read() if hasattr(content, 'read') else content
        self.s3_client.put_object(Bucket=self.bucket, Key=self._key(path), Body=body)
        if on_progress is not None:
            on_progress(1.0)
        return True

    def __repr__(self) -> str:
        return f"S3Store('s3://{self.bucket}/{self.prefix}')"


class DryRunStore:
    """Logs every call and stores nothing."""

    def __init__(self, name: str = 'dry-run'):
        self.name = name

    def exists(self, path: str) -> bool:
        return False

    def create_directory(self, path: str) -> None:
        logger.info(f"[{self.name}] mkdir {path}")

    def put_file_contents(self, path: str, content: Content, overwrite: bool = True,
                          content_length: Optional[int] = None,
                          on_progress: Optional[ProgressCallback] = None) -> bool:
        logger.info(f"[{self.name}] put {path} ({content_length} bytes)")
        return True

    def __repr__(self) -> str:
        return f"DryRunStore({self.name!r})"


def build_store(endpoint: EndpointConfig, timeout: float = 300.0, pool_size: int = 30,
                dry_run: bool = False):
    """Create the store client for an endpoint based on its URL scheme."""
    if dry_run:
        return DryRunStore(f"endpoint {endpoint.index}")
    if endpoint.url.startswith('s3://'):
        return S3Store(endpoint.url, endpoint.username, endpoint.password)
    return WebDAVStore(endpoint.url, endpoint.username, endpoint.password,
                       timeout=timeout, pool_size=pool_size)
