"""
Pydantic models for GIF overlay rendering.

This module defines:
- Overlay variables (named text with a screen position)
- Conversion between the editor payload and the stored template shape
- Request/response schemas for single and bulk GIF generation
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


_LEADING_NUMBER_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_COLOR_TOKEN_RE = re.compile(
    r"^(?:#[0-9A-Fa-f]{3}|#[0-9A-Fa-f]{6}|#[0-9A-Fa-f]{8}"
    r"|0[xX][0-9A-Fa-f]{6}|0[xX][0-9A-Fa-f]{8}|[A-Za-z]+)"
    r"(?:@(?:\d+\.?\d*|\.\d+))?$"
)

DEFAULT_STYLES: dict[str, Any] = {
    "top": 45,
    "left": 45,
    "fontSize": 68,
    "color": "#ffffff",
    "horizontallyCentered": False,
}


class InvalidSpecError(ValueError):
    """Raised when an overlay variable carries malformed position data."""

    def __init__(self, message: str, variable: str | None = None):
        self.variable = variable
        if variable:
            message = f"Variable '{variable}': {message}"
        super().__init__(message)


def parse_leading_number(value: Any) -> float:
    """Parse the numeric prefix of values such as ``"45%"`` or ``"68px"``."""
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _LEADING_NUMBER_RE.match(str(value))
        if not match:
            raise ValueError(f"Expected a number, got {value!r}")
        number = float(match.group(1))
    if not math.isfinite(number):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return number


def is_valid_color(value: str) -> bool:
    return bool(_COLOR_TOKEN_RE.match(value or ""))


# =============================================================================
# OVERLAY VARIABLES
# =============================================================================


class OverlayPosition(BaseModel):
    """Placement of an overlay variable, as percentages of the frame."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    top: float = Field(description="Vertical offset, percent of frame height")
    left: float = Field(description="Horizontal offset, percent of frame width")
    font_size: float = Field(alias="fontSize", description="Font size in pixels")
    color: str = Field(description="Foreground color token")
    horizontal_center: bool = Field(
        default=False,
        alias="horizontalCenter",
        description="Center horizontally, ignoring left",
    )

    @field_validator("top", "left", "font_size", mode="before")
    @classmethod
    def _parse_number(cls, value: Any) -> float:
        return parse_leading_number(value)

    @field_validator("color", mode="before")
    @classmethod
    def _strip_color(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("color must be a string")
        return value.strip()

    @field_validator("horizontal_center", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> bool:
        return bool(value) if value is not None else False

    def font_size_px(self) -> int:
        return int(round(self.font_size))


class OverlayVariable(BaseModel):
    """A named text variable drawn onto every frame of the output."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    value: str = ""
    position: OverlayPosition

    @field_validator("value", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @classmethod
    def from_stored(cls, stored: Mapping[str, Any]) -> OverlayVariable:
        styles = dict(stored.get("styles") or {})
        return cls(
            name=stored.get("name", ""),
            value=stored.get("value", ""),
            position=OverlayPosition(
                top=styles.get("top"),
                left=styles.get("left"),
                fontSize=styles.get("fontSize"),
                color=styles.get("color"),
                horizontalCenter=styles.get("horizontallyCentered", False),
            ),
        )

    def to_stored(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "styles": {
                "top": self.position.top,
                "left": self.position.left,
                "fontSize": self.position.font_size_px(),
                "color": self.position.color,
                "horizontallyCentered": self.position.horizontal_center,
            },
        }

    def to_payload(self) -> dict[str, Any]:
        """Editor shape: ``{value, position: {top, left, fontSize, ...}}``."""
        return {
            "value": self.value,
            "position": self.position.model_dump(by_alias=True),
        }


def parse_overlay_variables(raw: Mapping[str, Any] | None) -> dict[str, OverlayVariable]:
    """Convert the editor payload ``name -> {value, position}`` into models.

    Insertion order is preserved; it is the drawing order of the overlays.
    """
    variables: dict[str, OverlayVariable] = {}
    for name, data in (raw or {}).items():
        if isinstance(data, OverlayVariable):
            variables[name] = data
            continue
        if not isinstance(data, Mapping):
            raise InvalidSpecError("expected an object with value and position", name)
        position = data.get("position")
        if not isinstance(position, Mapping):
            raise InvalidSpecError("missing position", name)
        try:
            variables[name] = OverlayVariable(
                name=name,
                value=data.get("value", ""),
                position=OverlayPosition.model_validate(position),
            )
        except ValidationError as exc:
            fields = sorted(
                {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
            )
            raise InvalidSpecError(
                f"invalid position data ({', '.join(fields) or 'unknown'})", name
            ) from exc
    return variables


def stored_to_variables(stored: list[Mapping[str, Any]] | None) -> dict[str, OverlayVariable]:
    variables: dict[str, OverlayVariable] = {}
    for item in stored or []:
        try:
            variable = OverlayVariable.from_stored(item)
        except ValidationError as exc:
            raise InvalidSpecError(
                "stored variable is malformed", str(item.get("name") or "")
            ) from exc
        variables[variable.name] = variable
    return variables


def default_stored_variable(name: str) -> dict[str, Any]:
    return {"name": name, "value": name, "styles": dict(DEFAULT_STYLES)}


# =============================================================================
# API MODELS
# =============================================================================


class GenerateGifRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: str | None = Field(default=None, alias="videoUrl")
    variables: dict[str, Any] = Field(default_factory=dict)
    gif_name: str | None = Field(default=None, alias="gifName")


class GenerateBulkGifRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: str | None = Field(default=None, alias="videoUrl")
    variables: dict[str, Any] = Field(default_factory=dict)
    file_contents: dict[str, list[str]] = Field(
        default_factory=dict, alias="fileContents"
    )
    gif_name: str = Field(default="gif", alias="gifName")


class GifErrorResponse(BaseModel):
    error: str
    details: str | None = None
