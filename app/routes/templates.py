from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity, get_current_identity, require_admin
from app.constants import Messages
from app.database import get_db
from app.services.storage import DocumentStorage, FilePayload
from app.services.template_service import TemplateService
from app.utils import as_dict, envelope

router = APIRouter(prefix="/api/templates", tags=["Templates"])


@router.get("")
async def list_templates(
    template_type: Optional[str] = Query(default=None, alias="type"),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    search: Optional[str] = Query(default=None, max_length=255),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    templates = await TemplateService(db).list_templates(
        identity,
        template_type=template_type,
        is_active=is_active,
        search=search,
    )
    return envelope(Messages.TEMPLATES_RETRIEVED, [as_dict(template) for template in templates])


@router.get("/active")
async def list_active_templates(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    templates = await TemplateService(db).list_active_templates()
    return envelope(Messages.TEMPLATES_RETRIEVED, [as_dict(template) for template in templates])


@router.get("/{template_id}")
async def get_template(
    template_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    template = await TemplateService(db).get_template(template_id, identity)
    return envelope(Messages.TEMPLATE_RETRIEVED, as_dict(template))


@router.get("/{template_id}/download")
async def download_template(
    template_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    template, content = await TemplateService(db).download_template(template_id, identity)
    file_name = DocumentStorage.sanitize_file_name(template.original_name)
    return Response(
        content=content,
        media_type=template.file_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(
    name: str = Form(...),
    type: str = Form(...),
    description: Optional[str] = Form(default=None),
    fields: Optional[str] = Form(default=None),
    is_active: bool = Form(default=True),
    file: UploadFile = File(...),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = await FilePayload.from_upload(file)
    template = await TemplateService(db).create_template(
        identity.user_id,
        payload,
        name,
        type,
        description=description,
        fields=fields,
        is_active=is_active,
    )
    return envelope(Messages.TEMPLATE_CREATED, as_dict(template))


@router.put("/{template_id}")
async def update_template(
    template_id: int,
    name: Optional[str] = Form(default=None),
    type: Optional[str] = Form(default=None),
    description: Optional[str] = Form(default=None),
    fields: Optional[str] = Form(default=None),
    is_active: Optional[bool] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = await FilePayload.from_upload(file) if file is not None else None
    template = await TemplateService(db).update_template(
        template_id,
        identity.user_id,
        upload=payload,
        name=name,
        template_type=type,
        description=description,
        fields=fields,
        is_active=is_active,
    )
    return envelope(Messages.TEMPLATE_UPDATED, as_dict(template))


@router.patch("/{template_id}/toggle-active")
async def toggle_template(
    template_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    template = await TemplateService(db).toggle_active(template_id, identity.user_id)
    return envelope(Messages.TEMPLATE_TOGGLED, as_dict(template))


@router.delete("/{template_id}")
async def delete_template(
    template_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await TemplateService(db).delete_template(template_id)
    return envelope(Messages.TEMPLATE_DELETED, {"id": template_id})
