from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class StoredVariableStyles(BaseModel):
    top: float
    left: float
    fontSize: int
    color: str
    horizontallyCentered: bool = False


class StoredVariable(BaseModel):
    name: str
    value: str
    styles: StoredVariableStyles


class TemplateResponse(BaseModel):
    template_id: str
    name: str
    video_url: str | None = None
    gif_url: str | None = None
    variables: list[StoredVariable] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateCreateResponse(BaseModel):
    ok: bool
    template: TemplateResponse


class TemplateListResponse(BaseModel):
    ok: bool
    templates: list[TemplateResponse]


class TemplateGetResponse(BaseModel):
    ok: bool
    template: TemplateResponse


class TemplateVariablesUpdateRequest(BaseModel):
    variables: dict[str, Any]


class TemplateVariablesUpdateResponse(BaseModel):
    ok: bool
    template: TemplateResponse


class TemplateGifUploadResponse(BaseModel):
    ok: bool
    gif_url: str


class TemplateDeleteResponse(BaseModel):
    ok: bool
