from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity, get_current_identity
from app.database import get_db
from app.services.file_access import FileAccessService
from app.services.storage import DocumentStorage

router = APIRouter(prefix="/files", tags=["Files"])


@router.get("/{key:path}", name="download_file")
async def download_file(
    key: str,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    """Serve a stored blob to its team or an admin."""
    stored = await FileAccessService(db).read_file(key, identity)
    return Response(
        content=stored.content,
        media_type=stored.content_type,
        headers={"Content-Disposition": f'inline; filename="{DocumentStorage.sanitize_file_name(stored.file_name)}"'},
    )
