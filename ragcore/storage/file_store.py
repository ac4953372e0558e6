import logging
import os
import re
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from ragcore.config.settings import StorageConfig, settings
from ragcore.core.errors import DownloadError
from ragcore.storage.base import FileStore

logger = logging.getLogger(__name__)


class LocalFileStore(FileStore):
    """
    Implements FileStore using the local disk.
    - Stores raw uploads under uploads_path/<document_id>/.
    - Fetches from local paths, file:// URIs or http(s) URLs, the latter with
      an explicit timeout.
    """

    def __init__(self, config: Optional[StorageConfig] = None, client: Optional[httpx.Client] = None):
        self.config = config or settings.storage
        self.uploads_path = self.config.uploads_path
        self.client = client
        os.makedirs(self.uploads_path, exist_ok=True)

    def save_upload(self, document_id: str, file_name: str, file_bytes: bytes) -> str:
        safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", os.path.basename(file_name)) or "upload"
        folder = os.path.join(self.uploads_path, document_id)
        os.makedirs(folder, exist_ok=True)
        path = os.path.join(folder, safe_name)
        with open(path, "wb") as f:
            f.write(file_bytes)
        return path

    def fetch(self, location: str) -> bytes:
        parsed = urlparse(location)
        if parsed.scheme in ("http", "https"):
            return self._download(location)

        path = unquote(parsed.path) if parsed.scheme == "file" else location
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise DownloadError(f"Failed to read file {path}: {e}") from e

    def _download(self, url: str) -> bytes:
        timeout = self.config.download_timeout_seconds
        try:
            if self.client is not None:
                response = self.client.get(url, timeout=timeout)
            else:
                response = httpx.get(url, timeout=timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DownloadError(f"Download timed out after {timeout}s: {url}") from e
        except httpx.HTTPStatusError as e:
            raise DownloadError(f"Failed to download file: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to download file: {e}") from e

        logger.info(f"Downloaded {len(response.content)} bytes from {url}")
        return response.content

    def delete(self, location: str) -> None:
        # Only files we stored ourselves are removed
        uploads_root = os.path.abspath(self.uploads_path)
        path = os.path.abspath(location)
        if path.startswith(uploads_root + os.sep) and os.path.exists(path):
            os.remove(path)
            folder = os.path.dirname(path)
            if folder != uploads_root and not os.listdir(folder):
                os.rmdir(folder)
