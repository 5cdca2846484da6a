"""Upload endpoints for background videos reused across renders."""

from typing import Annotated

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from videogen.api.deps import Storage
from videogen.api.render import check_media_kind
from videogen.services.media_resolver import MediaKind

router = APIRouter()


@router.post("/upload-video")
async def upload_video(storage: Storage, video: Annotated[UploadFile | None, File()] = None) -> dict:
    """Store a video in the uploads area and add it to the catalog.

    The returned ``filename`` can be passed as ``videoFilename`` to the render endpoints.
    """
    if video is None or not video.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No video file was uploaded",
        )
    check_media_kind(video, MediaKind.VIDEO)

    stored = storage.save_upload(video.filename, video.file, video.content_type)
    entry = storage.register_video(stored)
    return {"success": True, "video": entry, "message": "Video uploaded"}


@router.get("/uploaded-videos")
async def list_uploaded_videos(storage: Storage) -> dict:
    videos = storage.list_uploaded_videos()
    return {"success": True, "videos": videos, "count": len(videos)}


@router.delete("/uploaded-videos/{video_id}")
async def delete_uploaded_video(video_id: str, storage: Storage) -> dict:
    storage.delete_uploaded_video(video_id)
    return {"success": True, "message": "Video deleted"}
