"""Rendered video endpoints: download, listing, deletion."""

from fastapi import APIRouter
from fastapi.responses import FileResponse

from videogen.api.deps import AppSettings, Storage

router = APIRouter()


@router.get("/download/{video_id}")
async def download_video(video_id: str, storage: Storage, settings: AppSettings) -> FileResponse:
    """Stream a finished video. 404 while the job is still running or after failure."""
    path = storage.get_output(video_id)
    return FileResponse(
        path=str(path),
        media_type="video/mp4",
        filename=f"video-{video_id}{settings.output_extension}",
    )


@router.get("/videos")
async def list_videos(storage: Storage) -> dict:
    videos = [
        {**video, "downloadUrl": f"/api/download/{video['id']}"}
        for video in storage.list_outputs()
    ]
    return {"success": True, "videos": videos, "count": len(videos)}


@router.delete("/videos/{video_id}")
async def delete_video(video_id: str, storage: Storage) -> dict:
    storage.delete_output(video_id)
    return {"success": True, "message": "Video deleted"}
