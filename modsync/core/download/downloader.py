import os
import time
from typing import Callable, Dict, Optional

import requests

from ..api.errors import FilesystemError, ModSyncError, NetworkError, NetworkTimeoutError
from ...utils.config import EngineConfig

ProgressCallback = Callable[[Dict], None]


def progress_event(
    event_id: str,
    name: str,
    progress: int = 0,
    downloaded_bytes: int = 0,
    total_bytes: int = 0,
    speed: float = 0.0,
    completed: bool = False,
    error: Optional[str] = None
) -> Dict:
    """Builds a download progress event"""
    return {
        "id": event_id,
        "name": name,
        "progress": progress,
        "downloaded_bytes": downloaded_bytes,
        "total_bytes": total_bytes,
        "speed": speed,
        "completed": completed,
        "error": error
    }


class ModDownloader:
    """Handles mod archive downloads"""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        user_agent: str = "modsync/1.0",
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        log_callback: Optional[Callable[[str], None]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        # Persistent session so every download reuses connections
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept-Encoding': 'gzip, deflate',
            'Connection': 'keep-alive'
        })
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.log_callback = log_callback
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        session: Optional[requests.Session] = None,
        log_callback: Optional[Callable[[str], None]] = None
    ) -> "ModDownloader":
        return cls(
            session=session,
            user_agent=config.user_agent,
            timeout=config.download_timeout,
            max_retries=config.download_retries,
            log_callback=log_callback
        )

    def _log(self, message: str):
        if self.log_callback:
            self.log_callback(message)

    def download(
        self,
        url: str,
        destination: str,
        name: str = "",
        event_id: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> str:
        """
        Downloads a file to <destination>.tmp and renames it into place

        Args:
            url: File URL
            destination: Final path of the file
            name: Display name used in progress events
            event_id: ID used in progress events (defaults to the filename)
            progress_callback: Receives progress event dicts

        Returns:
            Final path of the downloaded file

        Raises:
            NetworkTimeoutError: Timed out on every attempt
            NetworkError: Download failed on every attempt
            FilesystemError: Could not write the file
        """
        event_id = event_id or os.path.basename(destination)
        name = name or os.path.basename(destination)
        temp_path = destination + ".tmp"

        def emit(**kwargs):
            if progress_callback:
                progress_callback(progress_event(event_id, name, **kwargs))

        try:
            os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
        except OSError as e:
            error = FilesystemError(f"Permission error creating folder: {e}", cause=e)
            emit(error=str(error))
            raise error

        emit()
        last_error: Optional[ModSyncError] = None

        for attempt in range(self.max_retries):
            try:
                if attempt > 0:
                    self._log(f"[Downloader] Retrying {name} (attempt {attempt + 1}/{self.max_retries})...\n")
                    self._sleep(self.retry_delay)

                response = self.session.get(url, stream=True, timeout=self.timeout)
                response.raise_for_status()

                total_size = int(response.headers.get('content-length', 0) or 0)
                downloaded_size = 0
                last_progress = -1
                started = time.monotonic()

                chunk_size = 1024 * 1024
                with open(temp_path, 'wb') as file:
                    for chunk in response.iter_content(chunk_size=chunk_size):
                        if not chunk:
                            continue
                        file.write(chunk)
                        downloaded_size += len(chunk)

                        # Only report when the percentage changes
                        progress = int(downloaded_size * 100 / total_size) if total_size > 0 else 0
                        if progress != last_progress:
                            last_progress = progress
                            elapsed = time.monotonic() - started
                            emit(
                                progress=progress,
                                downloaded_bytes=downloaded_size,
                                total_bytes=total_size,
                                speed=downloaded_size / elapsed if elapsed > 0 else 0.0
                            )

                if total_size > 0 and downloaded_size < total_size:
                    last_error = NetworkError(f"Incomplete download: {downloaded_size}/{total_size} bytes")
                    self._log(f"[Downloader] {last_error}\n")
                    continue

                os.replace(temp_path, destination)
                emit(
                    progress=100,
                    downloaded_bytes=downloaded_size,
                    total_bytes=total_size or downloaded_size,
                    completed=True
                )
                self._log(f"[Downloader] Download completed: {destination}\n")
                return destination

            except requests.Timeout as e:
                last_error = NetworkTimeoutError(
                    f"Timeout downloading {name} - network may be slow or unavailable", cause=e
                )
                self._log(f"[Downloader] {last_error} (attempt {attempt + 1}/{self.max_retries})\n")

            except requests.RequestException as e:
                last_error = NetworkError(f"Network error downloading {name}: {e}", cause=e)
                self._log(f"[Downloader] {last_error}\n")

            except OSError as e:
                # Don't retry filesystem errors
                error = FilesystemError(f"Error writing {temp_path}: {e}", cause=e)
                emit(error=str(error))
                raise error

        emit(error=str(last_error))
        raise last_error
