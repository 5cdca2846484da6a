"""Media resolution: turn a request's media references into local files.

A reference is either absent, a file already in the uploads area, or a remote
URL. Remote URLs are streamed into the uploads area under a fresh name so the
render worker can read them like any other upload.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlsplit
from uuid import uuid4

import httpx

from videogen.config import Settings, get_settings
from videogen.exceptions import DownloadError, InvalidMediaReferenceError
from videogen.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,5}$")


class MediaKind(Enum):
    """Role of a media file in the composition, set by the request field it came from."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    LOGO = "logo"


DEFAULT_EXTENSIONS: dict[MediaKind, str] = {
    MediaKind.IMAGE: ".jpg",
    MediaKind.VIDEO: ".mp4",
    MediaKind.AUDIO: ".mp3",
    MediaKind.LOGO: ".png",
}


class MediaSource(Enum):
    ABSENT = "absent"
    UPLOAD = "upload"
    URL = "url"


@dataclass(frozen=True)
class MediaReference:
    """Where a piece of media comes from."""

    kind: MediaKind
    source: MediaSource = MediaSource.ABSENT
    value: Optional[str] = None

    @classmethod
    def absent(cls, kind: MediaKind) -> "MediaReference":
        return cls(kind=kind)

    @classmethod
    def from_upload(cls, kind: MediaKind, filename: str) -> "MediaReference":
        return cls(kind=kind, source=MediaSource.UPLOAD, value=filename)

    @classmethod
    def from_url(cls, kind: MediaKind, url: str) -> "MediaReference":
        return cls(kind=kind, source=MediaSource.URL, value=url)

    @classmethod
    def from_fields(
        cls,
        kind: MediaKind,
        upload: Optional[str] = None,
        url: Optional[str] = None,
    ) -> "MediaReference":
        """Build from request fields; an upload wins over a URL."""
        if upload:
            return cls.from_upload(kind, upload)
        if url:
            return cls.from_url(kind, url)
        return cls.absent(kind)


@dataclass(frozen=True)
class ResolvedMedia:
    """A media reference normalized to a file in the uploads area (or nothing)."""

    kind: MediaKind
    filename: Optional[str] = None
    downloaded: bool = False


def infer_extension(url: str, kind: MediaKind) -> str:
    """File extension from the URL path (query ignored), else the kind's default."""
    suffix = PurePosixPath(unquote(urlsplit(url).path)).suffix.lower()
    if EXTENSION_RE.match(suffix):
        return suffix
    return DEFAULT_EXTENSIONS[kind]


class MediaResolver:
    """Resolves media references into filenames in the uploads area."""

    def __init__(
        self,
        storage: LocalStorageService,
        settings: Settings | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self.storage = storage
        self.settings = settings or get_settings()
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=self.settings.download_timeout_seconds)
        )

    async def resolve(self, ref: MediaReference) -> ResolvedMedia:
        """Resolve a single reference.

        Raises:
            DownloadError: remote fetch or local write failed
            InvalidMediaReferenceError: upload name unusable or URL not http(s)
        """
        if ref.source == MediaSource.ABSENT or not ref.value:
            return ResolvedMedia(kind=ref.kind)

        if ref.source == MediaSource.UPLOAD:
            if not self.storage.upload_exists(ref.value):
                raise InvalidMediaReferenceError(f"Uploaded file not found: {ref.value}")
            return ResolvedMedia(kind=ref.kind, filename=ref.value)

        filename = await self._download(ref.value, ref.kind)
        return ResolvedMedia(kind=ref.kind, filename=filename, downloaded=True)

    async def resolve_all(self, refs: list[MediaReference]) -> list[ResolvedMedia]:
        """Resolve independent references concurrently, preserving order.

        If any fails, files downloaded for the same batch are removed and the
        first error is raised.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.download_concurrency))

        async def _bounded(ref: MediaReference) -> ResolvedMedia:
            async with semaphore:
                return await self.resolve(ref)

        results = await asyncio.gather(*(_bounded(ref) for ref in refs), return_exceptions=True)

        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for result in results:
                if isinstance(result, ResolvedMedia) and result.downloaded and result.filename:
                    self.storage.delete_upload(result.filename)
            raise errors[0]
        return list(results)

    async def _download(self, url: str, kind: MediaKind) -> str:
        if urlsplit(url).scheme not in ("http", "https"):
            raise InvalidMediaReferenceError(f"Unsupported media URL: {url}")

        filename = f"{uuid4().hex}{infer_extension(url, kind)}"
        path = self.storage.upload_path(filename)
        max_bytes = self.settings.max_download_bytes

        logger.info(f"Downloading {kind.value} from {url} -> {filename}")
        try:
            async with self._client_factory() as client:
                async with client.stream("GET", url, follow_redirects=True) as response:
                    if not response.is_success:
                        raise DownloadError(
                            f"Download failed with HTTP {response.status_code}: {url}",
                            url=url,
                            response_status=response.status_code,
                        )
                    written = 0
                    with open(path, "wb") as out:
                        async for chunk in response.aiter_bytes():
                            written += len(chunk)
                            if max_bytes and written > max_bytes:
                                raise DownloadError(
                                    f"Download exceeds {max_bytes} bytes: {url}", url=url
                                )
                            out.write(chunk)
        except DownloadError:
            path.unlink(missing_ok=True)
            logger.warning(f"Download failed: {url}")
            raise
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            path.unlink(missing_ok=True)
            logger.warning(f"Download failed: {url}: {e}")
            raise DownloadError(f"Failed to download {url}: {e}", url=url) from e
        except OSError as e:
            path.unlink(missing_ok=True)
            logger.error(f"Could not write {filename}: {e}")
            raise DownloadError(f"Failed to store download from {url}: {e}", url=url) from e
        except asyncio.CancelledError:
            path.unlink(missing_ok=True)
            raise

        logger.info(f"Downloaded {url} ({written} bytes)")
        return filename
