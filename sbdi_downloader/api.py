"""
SBDI API client with robust error handling and metadata caching.

This module provides a clean interface to the SBDI biocache web services with:
- Connection pooling and session management
- Exponential backoff retry logic for GET requests
- Proper rate limit handling
- Streaming file downloads
- Field, assertion, layer and download-reason vocabularies, cached with a TTL
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from sbdi_downloader import __version__
from sbdi_downloader.config import SBDIConfig
from sbdi_downloader.fields import FIELD_TYPES, FieldInfo, filter_fields
from sbdi_downloader.utils import get_logger

# Biocache endpoints
INDEX_FIELDS_ENDPOINT = "index/fields"
ASSERTION_CODES_ENDPOINT = "assertions/codes"
OCCURRENCE_SEARCH_ENDPOINT = "occurrences/search"
OFFLINE_DOWNLOAD_ENDPOINT = "occurrences/offline/download"

# Spatial and logger endpoints
LAYERS_ENDPOINT = "layers"
REASONS_ENDPOINT = "reasons"

DOWNLOAD_CHUNK_SIZE = 64 * 1024

T = TypeVar("T")


class SBDIError(Exception):
    """Base exception for SBDI errors."""

    pass


class InvalidRequestError(SBDIError, ValueError):
    """Raised when a query is invalid. Always raised before anything is submitted."""

    pass


class APIError(SBDIError):
    """Raised for general API errors."""

    pass


class RateLimitError(APIError):
    """Raised when SBDI rate limits are exceeded."""

    pass


class DownloadError(SBDIError):
    """Raised when the offline download protocol fails."""

    pass


class JobTimeoutError(DownloadError):
    """Raised when an offline download job does not finish in time."""

    pass


@dataclass
class DownloadReason:
    """
    A download justification accepted by the SBDI logger service.

    Attributes:
        id: Numeric reason id sent as ``reasonTypeId``
        name: Human readable reason
        rkey: Message key of the reason
        deprecated: Reason is no longer accepted
    """

    id: int
    name: str
    rkey: str | None = None
    deprecated: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> DownloadReason:
        """Create DownloadReason from a logger service response."""
        return cls(
            id=int(data.get("id", -1)),
            name=data.get("name", ""),
            rkey=data.get("rkey"),
            deprecated=bool(data.get("deprecated", False)),
        )


class SBDIClient:
    """
    Client for interacting with the SBDI web services.

    Handles connection pooling, retries, downloads and error handling.
    Vocabularies fetched from the metadata endpoints are kept for
    ``config.metadata_ttl`` seconds; call :meth:`clear_metadata_cache`
    to force a refetch.

    Example:
        client = SBDIClient(SBDIConfig(email="me@example.org"))
        for reason in client.reasons():
            print(reason.id, reason.name)
    """

    def __init__(self, config: SBDIConfig | None = None):
        """
        Initialize SBDI client.

        Args:
            config: Client configuration (defaults if omitted)
        """
        self.config = config or SBDIConfig()
        self.logger = get_logger()
        self._metadata: dict[str, tuple[float, Any]] = {}

        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=1.0,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": f"sbdi-downloader/{__version__} (Python)",
            }
        )

        return session

    @staticmethod
    def build_url(
        base_url: str,
        endpoint: str,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
    ) -> str:
        """
        Build a full request URL.

        Args:
            base_url: Service base URL
            endpoint: Endpoint path relative to the base
            params: Query parameters; a list of pairs allows repeated keys (fq)

        Returns:
            URL with encoded query string
        """
        url = urljoin(base_url, endpoint)
        return requests.Request("GET", url, params=params).prepare().url

    def get_json(
        self,
        url: str,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
    ) -> Any:
        """
        Make a GET request and decode the JSON response.

        Args:
            url: Full request URL
            params: Query parameters

        Returns:
            Decoded JSON response

        Raises:
            RateLimitError: If rate limited
            APIError: For other API errors
        """
        self.logger.debug(f"GET {url}")

        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout)

            if response.status_code == 429:
                raise RateLimitError("SBDI rate limit exceeded. Please wait and retry.")

            response.raise_for_status()
            return response.json()

        except requests.exceptions.HTTPError as e:
            raise APIError(f"HTTP error: {e}")
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {e}")
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {e}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {e}")

    def download_to_file(self, url: str, path: str | Path) -> Path:
        """
        Download a binary file, streaming it to disk.

        The file is written next to its target and moved into place once
        complete, so an interrupted download never leaves a partial archive
        behind.

        Args:
            url: File URL
            path: Destination path

        Returns:
            Path to the downloaded file

        Raises:
            APIError: If the download fails
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")

        self.logger.info(f"Downloading {url}")

        try:
            with self.session.get(
                url,
                stream=True,
                timeout=self.config.timeout,
                headers={"Accept": "*/*"},
            ) as response:
                response.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.RequestException as e:
            partial.unlink(missing_ok=True)
            raise APIError(f"Download of {url} failed: {e}")
        except BaseException:
            # disk full, interrupted, ...
            partial.unlink(missing_ok=True)
            raise

        partial.replace(path)
        self.logger.debug(f"Saved {path} ({path.stat().st_size:,} bytes)")
        return path

    def _cached(self, key: str, loader: Callable[[], T]) -> T:
        """Return a cached metadata value, loading it if missing or expired."""
        now = time.monotonic()
        entry = self._metadata.get(key)

        if entry is not None and now - entry[0] < self.config.metadata_ttl:
            return entry[1]

        value = loader()
        if self.config.metadata_ttl > 0:
            self._metadata[key] = (now, value)
        return value

    def clear_metadata_cache(self) -> None:
        """Forget all cached vocabularies."""
        self._metadata.clear()

    def _index_fields(self) -> list[FieldInfo]:
        url = urljoin(self.config.server.biocache_url, INDEX_FIELDS_ENDPOINT)
        data = self.get_json(url)
        return [FieldInfo.from_index_field(item) for item in data]

    def _assertion_codes(self) -> list[FieldInfo]:
        url = urljoin(self.config.server.biocache_url, ASSERTION_CODES_ENDPOINT)
        data = self.get_json(url)
        return [FieldInfo.from_assertion(item) for item in data]

    def _layers(self) -> list[FieldInfo]:
        url = urljoin(self.config.server.spatial_url, LAYERS_ENDPOINT)
        data = self.get_json(url)
        return [
            FieldInfo.from_layer(item)
            for item in data
            if item.get("enabled", True) and item.get("id") is not None
        ]

    def fields(self, fields_type: str = "occurrence") -> list[FieldInfo]:
        """
        Get the fields of a given type.

        Args:
            fields_type: One of "occurrence", "occurrence_stored",
                "occurrence_indexed", "assertions", "layers"

        Returns:
            List of FieldInfo

        Raises:
            ValueError: If fields_type is unknown
        """
        if fields_type not in FIELD_TYPES:
            raise ValueError(
                f"Unknown fields type: {fields_type}. "
                f"Valid types: {', '.join(FIELD_TYPES)}"
            )

        if fields_type == "assertions":
            return self._cached("assertions", self._assertion_codes)

        if fields_type == "layers":
            return self._cached("layers", self._layers)

        index_fields = self._cached("index_fields", self._index_fields)
        return filter_fields(index_fields, fields_type)

    def assertions(self) -> list[FieldInfo]:
        """Get the quality assertions known to the service."""
        return self.fields("assertions")

    def layers(self) -> list[FieldInfo]:
        """Get the environmental and contextual layers."""
        return self.fields("layers")

    def reasons(self) -> list[DownloadReason]:
        """
        Get the valid download reasons.

        Returns:
            Non-deprecated reasons, sorted by id
        """

        def load() -> list[DownloadReason]:
            url = urljoin(self.config.server.logger_url, REASONS_ENDPOINT)
            data = self.get_json(url)
            reasons = [DownloadReason.from_api_response(item) for item in data]
            return sorted((r for r in reasons if not r.deprecated), key=lambda r: r.id)

        return self._cached("reasons", load)

    def close(self) -> None:
        """Close the session and release resources."""
        self.session.close()

    def __enter__(self) -> SBDIClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args) -> None:
        """Context manager exit."""
        self.close()
