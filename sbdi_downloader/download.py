"""
Offline download jobs.

Large occurrence downloads are produced asynchronously by the biocache
service: a job is submitted, its status URL is polled until the job
finishes, and the resulting zip archive is fetched. Archives are stored
under a name derived from the request URL so later identical requests can
reuse them.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sbdi_downloader.api import (
    APIError,
    DownloadError,
    JobTimeoutError,
    OFFLINE_DOWNLOAD_ENDPOINT,
    SBDIClient,
)
from sbdi_downloader.query import ParamList
from sbdi_downloader.utils import cache_filename, get_logger

_STATUS_ID = re.compile(r"status/([^/]+)/?$")


class JobStatus:
    """Job states reported by the status endpoint (lowercased)."""

    IN_QUEUE = "inqueue"
    RUNNING = "running"
    FINISHED = "finished"
    INVALID_ID = "invalidid"
    FAILED = "failed"

    ACTIVE = (IN_QUEUE, RUNNING)


@dataclass
class JobHandle:
    """
    A submitted offline download job.

    Attributes:
        job_id: Job identifier taken from the status URL
        status_url: URL to poll for the job status
        response: Raw submission response
    """

    job_id: str | None
    status_url: str
    response: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> JobHandle:
        """
        Create JobHandle from a submission response.

        Raises:
            DownloadError: If the response has no status URL
        """
        status_url = data.get("statusUrl") if isinstance(data, dict) else None
        if not status_url:
            raise DownloadError(f"reply from server was missing statusUrl: {data!r}")

        match = _STATUS_ID.search(status_url)
        return cls(
            job_id=match.group(1) if match else None,
            status_url=status_url,
            response=data,
        )


def recovery_url(status_url: str, download_base_url: str) -> str:
    """
    Derive the direct archive URL of a job from its status URL.

    Works around a server defect where a job that completed is reported
    as ``invalidId``: the archive of job ``abc-123-1526444453`` can be
    found at ``<download base>/abc-123/1526444453/data.zip``.

    Raises:
        DownloadError: If no job id can be found in the status URL
    """
    match = _STATUS_ID.search(status_url)
    if not match:
        raise DownloadError(f"cannot find a job id in status URL {status_url}")

    head, sep, tail = match.group(1).rpartition("-")
    path = f"{head}/{tail}" if sep else tail

    base = download_base_url if download_base_url.endswith("/") else download_base_url + "/"
    return f"{base}{path}/data.zip"


class OfflineDownload:
    """
    Run an offline download job and fetch its archive.

    Example:
        job = OfflineDownload(client, params)
        archive = job.run()
    """

    def __init__(self, client: SBDIClient, params: ParamList):
        """
        Initialize the download.

        Args:
            client: SBDI client
            params: Offline download request parameters
        """
        self.client = client
        self.config = client.config
        self.params = params
        self.logger = get_logger()
        self.url = client.build_url(
            self.config.server.biocache_url, OFFLINE_DOWNLOAD_ENDPOINT, params
        )

    @property
    def archive_path(self) -> Path:
        """Where the archive of this request is stored."""
        return cache_filename(self.url, self.config.cache_dir)

    def run(self) -> Path:
        """
        Get the archive for this request, from the cache or the server.

        Returns:
            Path to the zip archive

        Raises:
            DownloadError: If the job fails or the server replies unexpectedly
            JobTimeoutError: If the job does not finish in time
            APIError: For transport errors
        """
        path = self.archive_path

        if self.config.caching == "on" and path.exists():
            self.logger.info(f"Using cached file {path} for {self.url}")
            return path

        handle = self.submit()
        status = self.poll(handle)
        return self.fetch(handle, status, path)

    def submit(self) -> JobHandle:
        """Submit the job and return its handle."""
        self.logger.info("Submitting offline download request")
        data = self.client.get_json(self.url)
        handle = JobHandle.from_api_response(data)
        self.logger.debug(f"Job {handle.job_id} status URL: {handle.status_url}")
        return handle

    def poll(self, handle: JobHandle) -> dict[str, Any]:
        """
        Poll the job until it leaves the queued/running states.

        Returns:
            The last status response

        Raises:
            JobTimeoutError: If poll_timeout or max_poll_attempts is exceeded
        """
        started = time.monotonic()
        attempts = 1
        status = self._get_status(handle)

        while _state(status) in JobStatus.ACTIVE:
            elapsed = time.monotonic() - started

            if self.config.poll_timeout is not None and elapsed >= self.config.poll_timeout:
                raise JobTimeoutError(
                    f"job {handle.job_id} did not finish within "
                    f"{self.config.poll_timeout:g} seconds (last status: {status.get('status')})"
                )

            if (
                self.config.max_poll_attempts is not None
                and attempts >= self.config.max_poll_attempts
            ):
                raise JobTimeoutError(
                    f"job {handle.job_id} did not finish after {attempts} status "
                    f"checks (last status: {status.get('status')})"
                )

            time.sleep(self.config.poll_interval)
            status = self._get_status(handle)
            attempts += 1

        self.logger.debug(f"Job {handle.job_id} ended with status {status.get('status')}")
        return status

    def _get_status(self, handle: JobHandle) -> dict[str, Any]:
        status = self.client.get_json(handle.status_url)
        if not isinstance(status, dict):
            status = {"status": str(status)}

        if self.config.verbose:
            self.logger.info(f"Job {handle.job_id}: {status.get('status')}")
        return status

    def fetch(self, handle: JobHandle, status: dict[str, Any], path: Path) -> Path:
        """
        Download the archive of a job that left the active states.

        Raises:
            DownloadError: If the job did not finish or the recovery download fails
        """
        state = _state(status)
        notify = self.config.server.notify

        if state == JobStatus.INVALID_ID:
            url = recovery_url(handle.status_url, self.config.server.download_url)
            self.logger.warning(
                f"Server reported an invalid job id, trying the archive at {url}"
            )
            try:
                return self.client.download_to_file(url, path)
            except APIError as e:
                raise DownloadError(f"Offline download failed: {e}. {notify}")

        if state != JobStatus.FINISHED:
            raise DownloadError(
                f"unexpected response from server. {notify}. "
                f"The server response was: {status.get('status')}"
            )

        download_url = status.get("downloadUrl")
        if not download_url:
            raise DownloadError(
                f"job {handle.job_id} finished without a downloadUrl. {notify}"
            )

        return self.client.download_to_file(download_url, path)


def _state(status: dict[str, Any]) -> str:
    return str(status.get("status", "")).strip().lower()
