"""Property bag handed to the render worker.

The worker receives it as a JSON string on its command line, so the schema is
pinned here and validated before a process is ever launched.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from videogen.exceptions import InvalidRenderPropertiesError


class RenderProperties(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    title: str = Field(min_length=1)
    subtitle: str = ""
    background_color: str = Field(default="#000000", alias="backgroundColor", min_length=1)
    text_color: str = Field(default="#ffffff", alias="textColor", min_length=1)

    # Media, as filenames relative to the worker's public (uploads) dir
    image_url: str | None = Field(default=None, alias="imageUrl")
    video_url: str | None = Field(default=None, alias="videoUrl")
    audio_url: str | None = Field(default=None, alias="audioUrl")
    logo_url: str | None = Field(default=None, alias="logoUrl")

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v

    @classmethod
    def build(cls, **values: Any) -> "RenderProperties":
        """Validate values, raising InvalidRenderPropertiesError on failure."""
        try:
            return cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(x) for x in first.get("loc", []))
            raise InvalidRenderPropertiesError(f"{loc}: {first.get('msg')}") from e

    def to_props(self) -> dict[str, Any]:
        """camelCase dict as the worker's components expect it, without empty media."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_props(), ensure_ascii=False)
