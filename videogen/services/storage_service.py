"""Shared storage areas on local disk.

Two areas:
- uploads: files uploaded by clients and media downloaded by the resolver.
  The render worker serves this directory as its public dir, so media is
  referenced by bare filename.
- output: finished videos, one ``<video_id><ext>`` file per render job.
"""

import json
import logging
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO

from videogen.config import Settings, get_settings
from videogen.exceptions import (
    InvalidMediaReferenceError,
    OutputNotFoundError,
    UploadNotFoundError,
    UploadTooLargeError,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class StoredUpload:
    """A file written to the uploads area."""

    filename: str
    original_name: str
    path: Path
    size: int
    content_type: str | None = None


def is_safe_name(name: str) -> bool:
    """True when ``name`` is a plain filename that cannot escape its directory."""
    return bool(name) and bool(SAFE_NAME_RE.match(name)) and ".." not in name


class LocalStorageService:
    """Local file storage for uploads and rendered outputs."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.uploads_dir = Path(self.settings.uploads_dir)
        self.output_dir = Path(self.settings.output_dir)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.catalog_path = self.uploads_dir / "videos.json"
        self._catalog_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def upload_path(self, filename: str) -> Path:
        """Path of a stored upload; rejects names that would leave the uploads area."""
        if not is_safe_name(filename):
            raise InvalidMediaReferenceError(f"Invalid upload filename: {filename!r}")
        return self.uploads_dir / filename

    def upload_exists(self, filename: str) -> bool:
        return self.upload_path(filename).is_file()

    def save_upload(
        self,
        original_name: str,
        file_obj: BinaryIO,
        content_type: str | None = None,
    ) -> StoredUpload:
        """Write an uploaded file as ``<uuid>-<original name>``."""
        safe_original = UNSAFE_CHARS_RE.sub("_", Path(original_name or "upload").name).strip("._") or "upload"
        filename = f"{uuid.uuid4()}-{safe_original}"
        path = self.uploads_dir / filename
        max_bytes = self.settings.max_upload_size_mb * 1024 * 1024

        size = 0
        try:
            with open(path, "wb") as out:
                while chunk := file_obj.read(CHUNK_SIZE):
                    size += len(chunk)
                    if max_bytes and size > max_bytes:
                        raise UploadTooLargeError(max_bytes)
                    out.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        logger.info(f"Stored upload {filename} ({size} bytes)")
        return StoredUpload(
            filename=filename,
            original_name=original_name,
            path=path,
            size=size,
            content_type=content_type,
        )

    def delete_upload(self, filename: str) -> bool:
        path = self.upload_path(filename)
        if path.exists():
            path.unlink()
            return True
        return False

    # ------------------------------------------------------------------
    # Uploaded video catalog (videos.json)
    # ------------------------------------------------------------------

    def _read_catalog(self) -> list[dict[str, Any]]:
        if not self.catalog_path.exists():
            return []
        return json.loads(self.catalog_path.read_text(encoding="utf-8"))

    def _write_catalog(self, videos: list[dict[str, Any]]) -> None:
        self.catalog_path.write_text(json.dumps(videos, indent=2), encoding="utf-8")

    def register_video(self, upload: StoredUpload) -> dict[str, Any]:
        """Add an uploaded video to the catalog."""
        entry = {
            "id": str(uuid.uuid4()),
            "filename": upload.filename,
            "originalName": upload.original_name,
            "path": str(upload.path),
            "size": upload.size,
            "mimetype": upload.content_type,
            "uploadedAt": datetime.now(timezone.utc).isoformat(),
        }
        with self._catalog_lock:
            videos = self._read_catalog()
            videos.append(entry)
            self._write_catalog(videos)
        return entry

    def list_uploaded_videos(self) -> list[dict[str, Any]]:
        with self._catalog_lock:
            return self._read_catalog()

    def delete_uploaded_video(self, video_id: str) -> None:
        """Remove an uploaded video file and its catalog entry."""
        with self._catalog_lock:
            videos = self._read_catalog()
            entry = next((v for v in videos if v.get("id") == video_id), None)
            if entry is None:
                raise UploadNotFoundError(video_id)
            self.delete_upload(entry["filename"])
            videos.remove(entry)
            self._write_catalog(videos)
        logger.info(f"Deleted uploaded video {video_id}")

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def output_filename(self, video_id: str) -> str:
        return f"{video_id}{self.settings.output_extension}"

    def output_path(self, video_id: str) -> Path:
        if not is_safe_name(video_id):
            raise OutputNotFoundError(video_id)
        return self.output_dir / self.output_filename(video_id)

    def get_output(self, video_id: str) -> Path:
        """Path of a finished video. Raises OutputNotFoundError when absent."""
        path = self.output_path(video_id)
        if not path.is_file():
            raise OutputNotFoundError(video_id)
        return path

    def list_outputs(self) -> list[dict[str, Any]]:
        ext = self.settings.output_extension
        outputs = []
        for path in sorted(self.output_dir.glob(f"*{ext}")):
            stat = path.stat()
            outputs.append({
                "id": path.name[: -len(ext)],
                "filename": path.name,
                "size": stat.st_size,
                "createdAt": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            })
        return outputs

    def delete_output(self, video_id: str) -> None:
        path = self.get_output(video_id)
        path.unlink()
        logger.info(f"Deleted output {path.name}")
