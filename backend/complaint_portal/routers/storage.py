"""
Complaint Portal - Storage Router
Read and delete objects in the complaint-attachments bucket.
"""
import mimetypes

from fastapi import APIRouter, Depends, Response, status

from ..auth import get_current_actor
from ..services.access import Actor
from ..services.storage import BUCKET, BlobStore, get_blob_store

router = APIRouter(prefix=f"/storage/{BUCKET}", tags=["storage"])


@router.get("/{path:path}")
async def read_object(
    path: str,
    actor: Actor = Depends(get_current_actor),
    blob_store: BlobStore = Depends(get_blob_store)
):
    data = blob_store.read(actor, path)
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)


@router.delete("/{path:path}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_object(
    path: str,
    actor: Actor = Depends(get_current_actor),
    blob_store: BlobStore = Depends(get_blob_store)
):
    """Only the account whose id is the first path segment may delete."""
    blob_store.delete(actor, path)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
