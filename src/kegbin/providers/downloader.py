"""Streaming HTTP downloader with a progress bar."""

from __future__ import annotations

import time
from pathlib import Path
from urllib.parse import urlparse

import requests
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from kegbin.core.errors import DownloadError, StoreError
from kegbin.core.logging import get_logger

log = get_logger(__name__)


class HttpDownloader:
    """Downloads a URL to a file, chunk by chunk."""

    def __init__(
        self,
        timeout: float = 30,
        chunk_size: int = 8192,
        show_progress: bool = True,
        console: Console | None = None,
    ) -> None:
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.show_progress = show_progress
        self.console = console or Console(stderr=True)

    def _progress(self) -> Progress:
        return Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            disable=not self.show_progress,
            transient=True,
        )

    def download(self, url: str, dest: Path) -> Path:
        """Download ``url`` to ``dest``.

        The body is written to a temporary sibling file which then replaces
        ``dest``, so an interrupted download never leaves a truncated file
        under the final name.

        Raises:
            DownloadError: On connection errors or non-2xx responses.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        temp_file = dest.with_name(dest.name + ".part")

        start = time.perf_counter()
        log.info("download_start", url=url, path=str(dest))

        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0)) or None
                filename = Path(urlparse(url).path).name or url

                with self._progress() as progress, open(temp_file, "wb") as f:
                    task = progress.add_task(f"Downloading {filename}", total=total)
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
                            progress.update(task, advance=len(chunk))

        except requests.RequestException as e:
            temp_file.unlink(missing_ok=True)
            log.error("download_failed", url=url, error=str(e))
            raise DownloadError(f"Failed to download {url}: {e}", url=url) from e
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise StoreError(
                f"Can not write download: {e}",
                path=str(dest),
                operation="download"
            ) from e

        temp_file.replace(dest)
        log.info(
            "download_complete",
            url=url,
            path=str(dest),
            size=dest.stat().st_size,
            duration_ms=int((time.perf_counter() - start) * 1000)
        )
        return dest
