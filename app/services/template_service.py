"""Letter templates: admin-managed files students download and fill in.

A "Generate & Template" template also carries the form fields a student fills
in; a "Template Only" template is just the file.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_token import Identity
from app.constants import TEMPLATE_CONTENT_TYPES, TEMPLATE_EXTENSIONS, TemplateType
from app.errors import FileTooLarge, InvalidFileType, InvalidTemplate, StorageError, TemplateNotFound
from app.models.template import Template
from app.schemas import TemplateField
from app.services.storage import DocumentStorage, FilePayload, content_type_for, get_document_storage
from app.utils import env_int

logger = logging.getLogger("templates")

TEMPLATES_FOLDER = "templates"
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 255

_FIELDS_ADAPTER = TypeAdapter(list[TemplateField])


def parse_template_type(value: TemplateType | str) -> TemplateType:
    try:
        return TemplateType(value)
    except ValueError as exc:
        raise InvalidTemplate("Tipe template tidak valid") from exc


def parse_template_fields(raw: Any) -> Optional[list[dict[str, Any]]]:
    """Validate fields given as a JSON string or a list; ``None`` stays ``None``."""
    if raw is None:
        return None
    try:
        if isinstance(raw, (str, bytes)):
            fields = _FIELDS_ADAPTER.validate_json(raw)
        else:
            fields = _FIELDS_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise InvalidTemplate(f"Fields tidak valid ({location}): {first['msg']}") from exc

    for field in fields:
        if field.type == "select" and not field.options:
            raise InvalidTemplate("Field dengan tipe select harus memiliki options")
    orders = [field.order for field in fields]
    if len(set(orders)) != len(orders):
        raise InvalidTemplate("Setiap field harus memiliki order yang unik")
    return [field.model_dump(exclude_none=True) for field in sorted(fields, key=lambda f: f.order)]


class TemplateService:
    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[DocumentStorage] = None,
        *,
        max_upload_mb: Optional[int] = None,
    ) -> None:
        self.db = db
        self._storage = storage
        self.max_upload_mb = max_upload_mb or env_int("MAX_UPLOAD_SIZE_MB", 10, minimum=1)

    @property
    def storage(self) -> DocumentStorage:
        if self._storage is None:
            self._storage = get_document_storage()
        return self._storage

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if len(cleaned) < NAME_MIN_LENGTH:
            raise InvalidTemplate(f"Nama template minimal {NAME_MIN_LENGTH} karakter")
        if len(cleaned) > NAME_MAX_LENGTH:
            raise InvalidTemplate(f"Nama template maksimal {NAME_MAX_LENGTH} karakter")
        return cleaned

    @staticmethod
    def _check_fields(template_type: TemplateType, fields: Optional[list[dict[str, Any]]]) -> None:
        if template_type == TemplateType.GENERATE_AND_TEMPLATE and not fields:
            raise InvalidTemplate('Fields wajib untuk tipe "Generate & Template" dan tidak boleh kosong')

    def _check_file(self, upload: FilePayload) -> None:
        if not self.storage.validate_file_size(upload.size, self.max_upload_mb):
            raise FileTooLarge(f"File terlalu besar. Maksimal {self.max_upload_mb} MB")
        content_type = (upload.content_type or "").split(";", 1)[0].strip().lower()
        if content_type not in TEMPLATE_CONTENT_TYPES or not self.storage.validate_file_type(
            upload.file_name, TEMPLATE_EXTENSIONS
        ):
            raise InvalidFileType("Tipe file tidak diizinkan. File yang diizinkan: .doc, .docx, .pdf, .html, .txt")

    async def _get(self, template_id: int) -> Template:
        template = await self.db.get(Template, template_id)
        if template is None:
            raise TemplateNotFound()
        return template

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("%s failed; rolled back", action, exc_info=True)
            raise

    async def _discard_blob(self, key: Optional[str]) -> None:
        if not key:
            return
        try:
            await self.storage.delete(key)
        except (StorageError, OSError):
            logger.warning("Could not delete stored template %s", key, exc_info=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def list_templates(
        self,
        identity: Identity,
        *,
        template_type: Optional[TemplateType | str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> list[Template]:
        # students only ever see active templates unless they ask explicitly
        if not identity.is_admin and is_active is None:
            is_active = True
        if not identity.is_admin and is_active is False:
            return []

        stmt = select(Template).order_by(Template.created_at.desc(), Template.id.desc())
        if template_type:
            stmt = stmt.where(Template.type == parse_template_type(template_type))
        if is_active is not None:
            stmt = stmt.where(Template.is_active.is_(is_active))
        if search and search.strip():
            stmt = stmt.where(Template.name.ilike(f"%{search.strip()}%"))
        return list((await self.db.execute(stmt)).scalars())

    async def list_active_templates(self) -> list[Template]:
        return list(
            (
                await self.db.execute(
                    select(Template)
                    .where(Template.is_active.is_(True))
                    .order_by(Template.created_at.desc(), Template.id.desc())
                )
            ).scalars()
        )

    async def get_template(self, template_id: int, identity: Identity) -> Template:
        template = await self._get(template_id)
        if not template.is_active and not identity.is_admin:
            raise TemplateNotFound()
        return template

    async def download_template(self, template_id: int, identity: Identity) -> tuple[Template, bytes]:
        template = await self.get_template(template_id, identity)
        return template, await self.storage.get(template.file_name)

    # ------------------------------------------------------------------
    # Admin mutations
    # ------------------------------------------------------------------
    async def create_template(
        self,
        admin_id: str,
        upload: FilePayload,
        name: str,
        template_type: TemplateType | str,
        *,
        description: Optional[str] = None,
        fields: Any = None,
        is_active: bool = True,
    ) -> Template:
        name = self._clean_name(name)
        template_type = parse_template_type(template_type)
        parsed_fields = parse_template_fields(fields) if template_type == TemplateType.GENERATE_AND_TEMPLATE else None
        self._check_fields(template_type, parsed_fields)
        self._check_file(upload)

        stored = await self.storage.upload(upload.content, upload.file_name, TEMPLATES_FOLDER)
        template = Template(
            name=name,
            type=template_type,
            description=(description or "").strip() or None,
            file_name=stored.key,
            file_url=stored.url,
            file_size=stored.size,
            file_type=upload.content_type or content_type_for(upload.file_name),
            original_name=upload.file_name,
            fields=parsed_fields,
            version=1,
            is_active=is_active,
            created_by=admin_id,
        )
        self.db.add(template)
        try:
            await self._commit("create template")
        except Exception:
            await self._discard_blob(stored.key)
            raise
        logger.info("Template %s (%s) created by %s", template.id, template_type.value, admin_id)
        return template

    async def update_template(
        self,
        template_id: int,
        admin_id: str,
        *,
        upload: Optional[FilePayload] = None,
        name: Optional[str] = None,
        template_type: Optional[TemplateType | str] = None,
        description: Optional[str] = None,
        fields: Any = None,
        is_active: Optional[bool] = None,
    ) -> Template:
        template = await self._get(template_id)

        new_type = parse_template_type(template_type) if template_type else template.type
        if new_type == TemplateType.TEMPLATE_ONLY:
            new_fields = None
        elif fields is not None:
            new_fields = parse_template_fields(fields)
        else:
            new_fields = template.fields
        new_name = self._clean_name(name) if name is not None else template.name
        self._check_fields(new_type, new_fields)
        if upload is not None:
            self._check_file(upload)

        old_key = None
        stored = None
        if upload is not None:
            stored = await self.storage.upload(upload.content, upload.file_name, TEMPLATES_FOLDER)
            old_key = template.file_name
            template.file_name = stored.key
            template.file_url = stored.url
            template.file_size = stored.size
            template.file_type = upload.content_type or content_type_for(upload.file_name)
            template.original_name = upload.file_name
            template.version = (template.version or 1) + 1

        template.name = new_name
        template.type = new_type
        template.fields = new_fields
        if description is not None:
            template.description = description.strip() or None
        if is_active is not None:
            template.is_active = is_active
        template.updated_by = admin_id

        try:
            await self._commit("update template")
        except Exception:
            if stored is not None:
                await self._discard_blob(stored.key)
            raise
        await self._discard_blob(old_key)
        logger.info("Template %s updated by %s (version %s)", template.id, admin_id, template.version)
        return template

    async def toggle_active(self, template_id: int, admin_id: str) -> Template:
        template = await self._get(template_id)
        template.is_active = not template.is_active
        template.updated_by = admin_id
        await self._commit("toggle template")
        logger.info("Template %s is now %s", template.id, "active" if template.is_active else "inactive")
        return template

    async def delete_template(self, template_id: int) -> None:
        template = await self._get(template_id)
        key = template.file_name
        await self.db.delete(template)
        await self._commit("delete template")
        await self._discard_blob(key)
        logger.info("Template %s deleted", template_id)
