"""
Configuration loading for the sync uploader.

Settings come from the process environment, optionally layered over a JSON
config file using the same keys.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENDPOINT_KEYS = (
    'WEBDAV_URL',
    'WEBDAV_USERNAME',
    'WEBDAV_PASSWORD',
    'WEBDAV_FILE_MIN_SIZE',
    'WEBDAV_FILE_MAX_SIZE',
)

TRUE_VALUES = {'1', 'true', 'yes', 'on'}
FALSE_VALUES = {'0', 'false', 'no', 'off', ''}


@dataclass
class EndpointConfig:
    """One remote endpoint group."""
    index: int
    url: str
    username: str
    password: str
    min_size: int
    max_size: int

    def accepts(self, size: int) -> bool:
        return self.min_size <= size <= self.max_size

    def __repr__(self) -> str:
        return f"EndpointConfig(index={self.index}, url={self.url!r}, username={self.username!r})"


@dataclass
class SyncConfig:
    """Complete settings for one sync run."""
    directory_path: Path
    pack_files_smaller_than: int
    pack_size: int
    endpoints: List[EndpointConfig]
    state_file: Path = Path('upload_state.jsonl')
    ignore_paths: List[str] = field(default_factory=list)
    min_concurrency: int = 2
    max_concurrency: int = 30
    min_queued_bytes: int = 1_000_000
    max_queued_bytes: int = 20_000_000
    check_exists: bool = True
    max_attempts: int = 0
    retry_delay: float = 1.0
    retry_delay_max: float = 60.0
    report_interval: float = 1.0
    dry_run: bool = False
    state_fsync: bool = False
    request_timeout: float = 300.0


def endpoint_suffix(index: int) -> str:
    """Suffix of the n-th endpoint group: '' for the first, '_2', '_3', ... after."""
    return '' if index == 0 else f'_{index + 1}'


def load_config_file(config_file: Optional[Path] = None) -> dict:
    """Load configuration values from a JSON file.

    Args:
        config_file: Path to config file

    Returns:
        Dictionary of configuration values

    Raises:
        ConfigurationError: If the file cannot be read or is not a JSON object
    """
    if not config_file:
        return {}

    try:
        with open(config_file) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Error loading config file {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_file} must contain a JSON object")
    return {key: str(value) for key, value in data.items()}


def _require(values: Mapping[str, str], key: str) -> str:
    value = values.get(key)
    if value is None or str(value).strip() == '':
        raise ConfigurationError(f"{key} config is not defined in the environment variables.")
    return str(value).strip()


def _parse_int(values: Mapping[str, str], key: str, default: Optional[int] = None,
               minimum: int = 0) -> int:
    raw = values.get(key)
    if raw is None or str(raw).strip() == '':
        if default is None:
            return int(_require(values, key))
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{key} must be at least {minimum}, got {value}")
    return value


def _parse_float(values: Mapping[str, str], key: str, default: float) -> float:
    raw = values.get(key)
    if raw is None or str(raw).strip() == '':
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative, got {value}")
    return value


def _parse_bool(values: Mapping[str, str], key: str, default: bool) -> bool:
    raw = values.get(key)
    if raw is None:
        return default
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}")


def load_endpoints(values: Mapping[str, str]) -> List[EndpointConfig]:
    """Read ``WEBDAV_*`` groups until the first missing ``WEBDAV_URL[_n]``.

    Args:
        values: Configuration mapping

    Returns:
        Endpoints in declaration order

    Raises:
        ConfigurationError: If no group is defined or a group is incomplete
    """
    endpoints = []
    index = 0
    while values.get(f'WEBDAV_URL{endpoint_suffix(index)}'):
        suffix = endpoint_suffix(index)
        url, username, password = (
            _require(values, f'{key}{suffix}') for key in ENDPOINT_KEYS[:3]
        )
        min_size = _parse_int(values, f'WEBDAV_FILE_MIN_SIZE{suffix}')
        max_size = _parse_int(values, f'WEBDAV_FILE_MAX_SIZE{suffix}')
        if min_size > max_size:
            raise ConfigurationError(
                f"WEBDAV_FILE_MIN_SIZE{suffix} ({min_size}) exceeds WEBDAV_FILE_MAX_SIZE{suffix} ({max_size})"
            )
        endpoints.append(EndpointConfig(index, url, username, password, min_size, max_size))
        index += 1

    if not endpoints:
        raise ConfigurationError("WEBDAV config is not defined in the environment variables.")
    return endpoints


def load_config(environ: Optional[Mapping[str, str]] = None,
                config_file: Optional[Path] = None) -> SyncConfig:
    """Build the run configuration.

    Args:
        environ: Environment mapping, defaults to ``os.environ``
        config_file: Optional JSON file whose values the environment overrides

    Returns:
        Validated SyncConfig

    Raises:
        ConfigurationError: If a required setting is missing or invalid
    """
    values: dict = load_config_file(config_file)
    values.update(os.environ if environ is None else environ)

    directory_path = Path(_require(values, 'DIRECTORY_PATH'))
    pack_files_smaller_than = _parse_int(values, 'PACK_FILES_SMALLER_THAN')
    pack_size = _parse_int(values, 'PACK_SIZE', minimum=1)
    endpoints = load_endpoints(values)

    ignore_raw = values.get('IGNORE_PATHS', '')
    ignore_paths = [p for p in str(ignore_raw).split(os.pathsep) if p.strip()]

    config = SyncConfig(
        directory_path=directory_path,
        pack_files_smaller_than=pack_files_smaller_than,
        pack_size=pack_size,
        endpoints=endpoints,
        state_file=Path(values.get('STATE_FILE') or 'upload_state.jsonl'),
        ignore_paths=ignore_paths,
        min_concurrency=_parse_int(values, 'MIN_CONCURRENCY', 2, minimum=1),
        max_concurrency=_parse_int(values, 'MAX_CONCURRENCY', 30, minimum=1),
        min_queued_bytes=_parse_int(values, 'MIN_QUEUED_BYTES', 1_000_000, minimum=1),
        max_queued_bytes=_parse_int(values, 'MAX_QUEUED_BYTES', 20_000_000, minimum=1),
        check_exists=_parse_bool(values, 'CHECK_EXISTS', True),
        max_attempts=_parse_int(values, 'MAX_ATTEMPTS', 0),
        retry_delay=_parse_float(values, 'RETRY_DELAY', 1.0),
        retry_delay_max=_parse_float(values, 'RETRY_DELAY_MAX', 60.0),
        report_interval=_parse_float(values, 'REPORT_INTERVAL', 1.0),
        dry_run=_parse_bool(values, 'DRY_RUN', False),
        state_fsync=_parse_bool(values, 'STATE_FSYNC', False),
        request_timeout=_parse_float(values, 'REQUEST_TIMEOUT', 300.0),
    )

    if config.min_concurrency > config.max_concurrency:
        raise ConfigurationError("MIN_CONCURRENCY must not exceed MAX_CONCURRENCY")
    if config.min_queued_bytes > config.max_queued_bytes:
        raise ConfigurationError("MIN_QUEUED_BYTES must not exceed MAX_QUEUED_BYTES")

    logger.debug(f"Loaded config for {config.directory_path} with {len(endpoints)} endpoint(s)")
    return config
