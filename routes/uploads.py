import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from core.dependencies import get_blob_store
from domain.message.types import ContentKind
from infrastructure.storage.r2 import BlobStoreError, BlobValidationError, R2Service

logger = logging.getLogger(__name__)


def _kind_for(content_type: str) -> ContentKind:
    return ContentKind.IMAGE if (content_type or "").startswith("image/") else ContentKind.FILE


class UploadRoutes():
    def __init__(self):
        self.router = APIRouter(prefix="/api", tags=["Uploads"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/upload", self.upload_file, methods=["POST"], status_code=status.HTTP_200_OK)
        self.router.add_api_route("/upload-voice", self.upload_voice, methods=["POST"], status_code=status.HTTP_200_OK)
        self.router.add_api_route("/files/{public_id:path}", self.delete_file, methods=["DELETE"],
                                  status_code=status.HTTP_200_OK)

    async def upload_file(self,
                          file: UploadFile = File(...),
                          store: R2Service = Depends(get_blob_store)) -> dict:
        """Stores an attachment; the returned descriptor goes into ``fileData``."""
        return await self._store(store, file, _kind_for(file.content_type))

    async def upload_voice(self,
                           voice: UploadFile = File(...),
                           duration: float = Form(0),
                           store: R2Service = Depends(get_blob_store)) -> dict:
        return await self._store(store, voice, ContentKind.VOICE, duration)

    async def delete_file(self, public_id: str, store: R2Service = Depends(get_blob_store)) -> dict:
        try:
            await store.delete(public_id)
        except BlobStoreError as e:
            logger.error("Delete failed: %s", e)
            raise HTTPException(500, "Failed to delete file")
        return {"success": True, "message": "File deleted successfully"}

    async def _store(self, store: R2Service, upload: UploadFile, kind: ContentKind, duration: float = 0) -> dict:
        # One byte past the limit is enough to reject an oversized body.
        body = await upload.read(store.limit_for(kind) + 1)
        try:
            descriptor = await store.store(
                body, kind, upload.filename, upload.content_type or "application/octet-stream", duration
            )
        except BlobValidationError as e:
            raise HTTPException(400, str(e))
        except BlobStoreError as e:
            logger.error("Upload failed: %s", e)
            raise HTTPException(500, "Failed to upload file")
        return {"success": True, "fileData": descriptor}
