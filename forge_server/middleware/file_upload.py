"""
forge-server — File Upload Support
====================================

What:  Optional multipart/form-data handling for the whole server.
How:   FileUploadMiddleware parses multipart bodies before routing and puts the
       uploaded files on `request.state.files`:

           {"avatar": UploadFile, "attachments": [UploadFile, UploadFile]}

       Handlers read them through the `uploaded_files` dependency and persist
       them with `save_upload`. The form (and its spooled temp files) is closed
       once the response has been produced.

Only installed when `enable_file_upload` is true. Without it, `uploaded_files`
answers 400 so a handler never silently sees an empty upload.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from forge_server.exceptions import FileStorageError, HTTPError, ValidationError
from forge_server.responses import handle_error_response
from forge_server.schemas.options import FileUploadOptions

logger = logging.getLogger(__name__)

UploadedFiles = Dict[str, Union[UploadFile, List[UploadFile]]]

_CHUNK_SIZE = 64 * 1024


class FileTooLargeError(HTTPError):
    status_code = 413

    def __init__(self, filename: str, limit: int):
        super().__init__(
            message=f"File '{filename}' exceeds the {limit} byte limit",
            context={"filename": filename, "limit": limit},
        )


def _collect_files(form) -> UploadedFiles:
    files: UploadedFiles = {}
    for field, value in form.multi_items():
        if not isinstance(value, UploadFile):
            continue
        existing = files.get(field)
        if existing is None:
            files[field] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            files[field] = [existing, value]
    return files


def _iter_files(files: UploadedFiles):
    for value in files.values():
        if isinstance(value, list):
            yield from value
        else:
            yield value


class FileUploadMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, options: Optional[FileUploadOptions] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.options = options or FileUploadOptions()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        content_type = request.headers.get("content-type", "")
        if not content_type.lower().startswith("multipart/form-data"):
            return await call_next(request)

        # Cache the raw body first so the route can still parse the form itself
        await request.body()
        try:
            form = await request.form()
        except StarletteHTTPException as e:
            logger.warning("Malformed multipart body on %s %s: %s", request.method, request.url.path, e.detail)
            return handle_error_response(e)

        try:
            files = _collect_files(form)
            limit = self.options.max_file_size
            if limit is not None:
                for upload in _iter_files(files):
                    if upload.size is not None and upload.size > limit:
                        return handle_error_response(
                            FileTooLargeError(upload.filename or "upload", limit)
                        )
            request.state.files = files
            return await call_next(request)
        finally:
            await form.close()


def uploaded_files(request: Request) -> UploadedFiles:
    """
    FastAPI dependency returning the files parsed by FileUploadMiddleware.

    Raises:
        ValidationError (400) when file upload support is not enabled.
    """
    if not getattr(request.app.state, "file_upload_enabled", False):
        raise ValidationError("File upload is not enabled on this server", field="files")
    return getattr(request.state, "files", {})


async def save_upload(
    upload: UploadFile,
    destination: Union[str, Path],
    create_parent_path: bool = True,
) -> Path:
    """
    Write an uploaded file to `destination`.

    Returns:
        The destination path.

    Raises:
        FileStorageError if the directory is missing (and may not be created),
        or the write fails.
    """
    path = Path(destination)
    try:
        if create_parent_path:
            path.parent.mkdir(parents=True, exist_ok=True)
        await upload.seek(0)
        written = 0
        async with aiofiles.open(path, "wb") as f:
            while chunk := await upload.read(_CHUNK_SIZE):
                await f.write(chunk)
                written += len(chunk)
    except OSError as e:
        logger.error("Failed to store upload at %s: %s", path, e)
        raise FileStorageError(
            message="Failed to save uploaded file. Please try again.",
            context={"path": str(path), "os_error": str(e)},
        ) from e

    logger.info("File stored: %s (%d bytes)", path, written)
    return path
