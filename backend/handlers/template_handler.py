import json
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session

from database.base import get_db
from database.models import GifTemplate
from dependencies.template import require_template
from handlers.gif_handler import run_gif_render
from models.api_models import (
    TemplateCreateResponse,
    TemplateDeleteResponse,
    TemplateGetResponse,
    TemplateGifUploadResponse,
    TemplateListResponse,
    TemplateResponse,
    TemplateVariablesUpdateRequest,
    TemplateVariablesUpdateResponse,
)
from models.gif_models import InvalidSpecError
from operators.gif_operator import render_bulk, render_single
from operators.template_operator import (
    TemplateError,
    attach_rendered_gif,
    create_template,
    delete_template,
    list_templates,
    template_variables,
    update_template_variables,
)
from utils.overlay_values import parse_line_source


router = APIRouter(prefix="/templates", tags=["templates"])
logger = logging.getLogger(__name__)

LINE_SOURCE_FIELD_PREFIX = "lines_"


def _template_to_response(template: GifTemplate) -> TemplateResponse:
    return TemplateResponse(
        template_id=str(template.template_id),
        name=template.name,
        video_url=template.video_url,
        gif_url=template.gif_url,
        variables=template.variables or [],
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


def _parse_variable_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="variables must be a JSON list")
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="variables must be a JSON list")
    names = []
    for item in items:
        name = item.get("name") if isinstance(item, dict) else item
        if isinstance(name, str):
            names.append(name)
    return names


def _stored_payload(template: GifTemplate) -> dict:
    try:
        variables = template_variables(template)
    except InvalidSpecError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {name: v.to_payload() for name, v in variables.items()}


@router.post("/", response_model=TemplateCreateResponse)
async def template_create(
    file: UploadFile = File(...),
    name: str = Form(...),
    variables: str | None = Form(None),
    db: Session = Depends(get_db),
):
    if not file.filename or not name.strip():
        raise HTTPException(status_code=400, detail="File and name are required")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")

    try:
        template = create_template(
            db,
            name=name.strip(),
            filename=file.filename,
            content=content,
            content_type=file.content_type,
            variable_names=_parse_variable_names(variables),
        )
    except TemplateError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=str(e))

    return TemplateCreateResponse(ok=True, template=_template_to_response(template))


@router.get("/", response_model=TemplateListResponse)
async def template_list(db: Session = Depends(get_db)):
    templates = list_templates(db)
    return TemplateListResponse(
        ok=True,
        templates=[_template_to_response(t) for t in templates],
    )


@router.get("/{template_id}", response_model=TemplateGetResponse)
async def template_get(template: GifTemplate = Depends(require_template)):
    return TemplateGetResponse(ok=True, template=_template_to_response(template))


@router.put("/{template_id}/variables", response_model=TemplateVariablesUpdateResponse)
async def template_variables_update(
    request: TemplateVariablesUpdateRequest,
    template: GifTemplate = Depends(require_template),
    db: Session = Depends(get_db),
):
    try:
        template = update_template_variables(db, template.template_id, request.variables)
    except InvalidSpecError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return TemplateVariablesUpdateResponse(
        ok=True, template=_template_to_response(template)
    )


@router.post("/{template_id}/gif", response_model=TemplateGifUploadResponse)
async def template_gif_upload(
    file: UploadFile = File(...),
    template: GifTemplate = Depends(require_template),
    db: Session = Depends(get_db),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="GIF file is required")

    try:
        template = attach_rendered_gif(
            db, template.template_id, file.filename or f"{template.name}.gif", content
        )
    except TemplateError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return TemplateGifUploadResponse(ok=True, gif_url=template.gif_url)


@router.delete("/{template_id}", response_model=TemplateDeleteResponse)
async def template_delete(
    template: GifTemplate = Depends(require_template),
    db: Session = Depends(get_db),
):
    try:
        delete_template(db, template.template_id)
    except Exception:
        db.rollback()
        logger.exception("Failed to delete template %s", template.template_id)
        raise HTTPException(status_code=500, detail="Failed to delete template")

    return TemplateDeleteResponse(ok=True)


@router.post("/{template_id}/generate")
async def template_generate(template: GifTemplate = Depends(require_template)):
    return await run_gif_render(
        "Failed to generate GIF",
        render_single,
        template.video_url,
        _stored_payload(template),
        gif_name=template.name,
    )


@router.post("/{template_id}/generate-bulk")
async def template_generate_bulk(
    request: Request,
    template: GifTemplate = Depends(require_template),
):
    form = await request.form()
    line_sources: dict[str, list[str]] = {}
    for key, value in form.multi_items():
        if not key.startswith(LINE_SOURCE_FIELD_PREFIX) or isinstance(value, str):
            continue
        raw = await value.read()
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail=f"{key} must be UTF-8 text")
        line_sources[key[len(LINE_SOURCE_FIELD_PREFIX):]] = parse_line_source(text)

    if not line_sources:
        raise HTTPException(status_code=400, detail="At least one text file is required")

    gif_name = form.get("gif_name")
    return await run_gif_render(
        "Failed to generate bulk GIFs",
        render_bulk,
        template.video_url,
        _stored_payload(template),
        line_sources,
        gif_name if isinstance(gif_name, str) and gif_name.strip() else template.name,
    )
