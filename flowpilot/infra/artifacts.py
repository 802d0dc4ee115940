"""
Artifact download and export.

download_artifact() streams a produced video to disk with httpx. It is used
by the export sink after completion and by distribution agents that need a
local file to upload.
"""

import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

import httpx

from ..errors import ExternalError

if TYPE_CHECKING:
    from ..scheduler.entities import Job

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 120
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str, default: str = "video.mp4") -> str:
    cleaned = _UNSAFE_FILENAME_RE.sub("_", name).strip("._")
    return cleaned or default


async def download_artifact(
    url: str,
    dest_dir: str | Path,
    filename: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
) -> Path:
    """
    Stream `url` into `dest_dir`.

    Raises:
        ExternalError: On HTTP or transport failure
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    target = dest / safe_filename(filename or Path(httpx.URL(url).path).name)

    async def _stream(http: httpx.AsyncClient) -> None:
        async with http.stream("GET", url, follow_redirects=True) as response:
            if response.status_code >= 400:
                raise ExternalError(f"Download failed with HTTP {response.status_code}: {url}")
            with open(target, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)

    try:
        if client is not None:
            await _stream(client)
        else:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                await _stream(own_client)
    except httpx.HTTPError as e:
        target.unlink(missing_ok=True)
        raise ExternalError(f"Download failed: {e}") from e

    logger.info(f"Downloaded artifact to {target}")
    return target


async def download_to_temp(url: str, client: Optional[httpx.AsyncClient] = None) -> Path:
    """Download into a fresh temporary directory; the caller removes the file."""
    temp_dir = tempfile.mkdtemp(prefix="flowpilot_")
    try:
        return await download_artifact(url, temp_dir, client=client)
    except BaseException:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise


class ArtifactSink(Protocol):
    async def export(self, job: "Job") -> Optional[Path]:
        ...


class DownloadArtifactSink:
    """Exports completed videos to the downloads directory as <job_id>.mp4."""

    def __init__(self, downloads_dir: str | Path = "downloads", client: Optional[httpx.AsyncClient] = None):
        self.downloads_dir = Path(downloads_dir)
        self._client = client

    async def export(self, job: "Job") -> Optional[Path]:
        if not job.artifact_url:
            logger.warning(f"Job {job.job_id} has no artifact to export")
            return None
        return await download_artifact(
            job.artifact_url,
            self.downloads_dir,
            filename=f"{job.job_id}.mp4",
            client=self._client,
        )
