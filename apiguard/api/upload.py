"""Multipart upload endpoints."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import IO, Any, Optional, Tuple, Union

from apiguard.pipeline import MultipartUpload, RequestPipeline

FileSpec = Union[str, Path, Tuple[str, Union[bytes, IO[bytes]], str]]


class UploadAPI:
    def __init__(self, pipeline: RequestPipeline) -> None:
        self._pipeline = pipeline

    async def upload_image(self, file: FileSpec) -> Any:
        return await self._pipeline.post_form("/upload/images", _as_upload(file))

    async def upload_playlist_cover(self, playlist_id: Union[int, str], file: FileSpec) -> Any:
        return await self._pipeline.post_form(f"/upload/playlist/{playlist_id}/cover", _as_upload(file))


def _as_upload(file: FileSpec, field: str = "file") -> MultipartUpload:
    """Accept a filesystem path or a ready ``(filename, content, content_type)`` tuple."""
    if isinstance(file, tuple):
        return MultipartUpload(files={field: file})
    path = Path(file)
    content_type: Optional[str] = mimetypes.guess_type(path.name)[0]
    return MultipartUpload(
        files={field: (path.name, path.read_bytes(), content_type or "application/octet-stream")}
    )
