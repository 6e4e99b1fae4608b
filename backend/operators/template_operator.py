import logging
import mimetypes
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from database.models import GifTemplate
from models.gif_models import (
    OverlayVariable,
    default_stored_variable,
    parse_overlay_variables,
    stored_to_variables,
)
from utils.gcs_utils import delete_file, parse_gcs_url, parse_public_url, upload_file
from utils.overlay_values import sanitize_filename

logger = logging.getLogger(__name__)

GCS_BUCKET = os.getenv("GCS_BUCKET", "gif-studio")


class TemplateError(Exception):
    pass


class TemplateNotFoundError(TemplateError):
    def __init__(self, template_id: UUID):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class TemplateStorageError(TemplateError):
    pass


def _resolve_content_type(filename: str, content_type: str | None) -> str:
    if content_type and content_type != "application/octet-stream":
        return content_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or content_type or "application/octet-stream"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_template(
    db: DBSession,
    name: str,
    filename: str,
    content: bytes,
    content_type: str | None = None,
    variable_names: list[str] | None = None,
) -> GifTemplate:
    extension = Path(filename).suffix or ".mp4"
    blob_path = f"videos/{int(time.time() * 1000)}{extension}"
    upload_info = upload_file(
        bucket_name=GCS_BUCKET,
        contents=content,
        destination_blob_name=blob_path,
        content_type=_resolve_content_type(filename, content_type),
    )
    if not upload_info:
        raise TemplateStorageError("Failed to upload video to storage")

    names = [n.strip() for n in (variable_names or []) if n and n.strip()]
    template = GifTemplate(
        name=name,
        video_url=upload_info["url"],
        variables=[default_stored_variable(n) for n in dict.fromkeys(names)],
        created_at=_now(),
        updated_at=_now(),
    )
    db.add(template)
    db.commit()
    db.refresh(template)

    logger.info("Created GIF template %s (%d variables)", template.template_id, len(names))
    return template


def list_templates(db: DBSession) -> list[GifTemplate]:
    return db.query(GifTemplate).order_by(GifTemplate.created_at.desc()).all()


def get_template(db: DBSession, template_id: UUID) -> GifTemplate | None:
    return (
        db.query(GifTemplate).filter(GifTemplate.template_id == template_id).first()
    )


def require_template_record(db: DBSession, template_id: UUID) -> GifTemplate:
    template = get_template(db, template_id)
    if not template:
        raise TemplateNotFoundError(template_id)
    return template


def template_variables(template: GifTemplate) -> dict[str, OverlayVariable]:
    return stored_to_variables(template.variables)


def update_template_variables(
    db: DBSession,
    template_id: UUID,
    variables: Mapping[str, Any],
) -> GifTemplate:
    template = require_template_record(db, template_id)
    parsed = parse_overlay_variables(variables)

    template.variables = [v.to_stored() for v in parsed.values()]
    template.updated_at = _now()
    db.commit()
    db.refresh(template)
    return template


def attach_rendered_gif(
    db: DBSession,
    template_id: UUID,
    filename: str,
    content: bytes,
) -> GifTemplate:
    template = require_template_record(db, template_id)

    stem = sanitize_filename(Path(filename).stem) or "gif"
    blob_path = f"gifs/{int(time.time() * 1000)}-{stem}.gif"
    upload_info = upload_file(
        bucket_name=GCS_BUCKET,
        contents=content,
        destination_blob_name=blob_path,
        content_type="image/gif",
    )
    if not upload_info:
        raise TemplateStorageError("Failed to upload GIF to storage")

    template.gif_url = upload_info["url"]
    template.updated_at = _now()
    db.commit()
    db.refresh(template)
    return template


def _blob_location(url: str | None) -> tuple[str, str] | None:
    if not url:
        return None
    return parse_gcs_url(url) or parse_public_url(url)


def delete_template(db: DBSession, template_id: UUID) -> bool:
    template = get_template(db, template_id)
    if not template:
        return False

    for url in (template.video_url, template.gif_url):
        location = _blob_location(url)
        if location:
            delete_file(bucket_name=location[0], blob_name=location[1])

    db.delete(template)
    db.commit()
    return True
