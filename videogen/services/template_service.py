"""Template selection for the render worker.

Maps a (content kind, format key) pair onto the composition registered in the
render worker and the canvas geometry it renders at.

Content kinds:
- TEXT: text only over a solid background colour
- IMAGE: background image + title + subtitle + soundtrack + logo
- VIDEO: background video + title + subtitle + soundtrack + logo

Unknown format keys fall back to landscape (1920x1080) instead of failing.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

DEFAULT_FORMAT_KEY = "landscape"
DEFAULT_FPS = 30


class ContentKind(Enum):
    """What the background of the video is made of."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"

    @classmethod
    def _missing_(cls, value: object) -> Optional["ContentKind"]:
        aliases = {
            "text": cls.TEXT,
            "image": cls.IMAGE,
            "video": cls.VIDEO,
            "text-only": cls.TEXT,
            "text_only": cls.TEXT,
            "image-background": cls.IMAGE,
            "image_background": cls.IMAGE,
            "video-background": cls.VIDEO,
            "video_background": cls.VIDEO,
        }
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None


@dataclass(frozen=True)
class Geometry:
    """Canvas size of a template."""

    width: int
    height: int
    aspect_ratio: str


@dataclass(frozen=True)
class FormatPreset:
    """A platform preset: composition suffix, geometry and default length."""

    name: str
    template_suffix: str
    geometry: Geometry
    long_form: bool = False


@dataclass(frozen=True)
class TemplateSelection:
    """Result of a template lookup."""

    template_id: str
    content_kind: ContentKind
    format_key: str
    geometry: Geometry
    fps: int = DEFAULT_FPS
    default_duration_frames: int = 300

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "template_id": self.template_id,
            "content_kind": self.content_kind.value,
            "format_key": self.format_key,
            "width": self.geometry.width,
            "height": self.geometry.height,
            "aspect_ratio": self.geometry.aspect_ratio,
            "fps": self.fps,
            "default_duration_frames": self.default_duration_frames,
        }


LANDSCAPE = Geometry(width=1920, height=1080, aspect_ratio="16:9")
SQUARE = Geometry(width=1080, height=1080, aspect_ratio="1:1")
PORTRAIT = Geometry(width=1080, height=1920, aspect_ratio="9:16")

PRESETS: dict[str, FormatPreset] = {
    "landscape": FormatPreset("landscape", "", LANDSCAPE),
    "youtube": FormatPreset("youtube", "YouTube", LANDSCAPE, long_form=True),
    "instagram-post": FormatPreset("instagram-post", "InstagramPost", SQUARE),
    "instagram-stories": FormatPreset("instagram-stories", "InstagramStories", PORTRAIT),
    "tiktok": FormatPreset("tiktok", "TikTok", PORTRAIT, long_form=True),
}

# Client-facing format key -> preset name
FORMAT_KEYS: dict[str, str] = {
    "landscape": "landscape",
    "youtube": "youtube",
    "square": "instagram-post",
    "instagram-post": "instagram-post",
    "stories": "instagram-stories",
    "instagram-stories": "instagram-stories",
    "instagram-reels": "instagram-stories",
    "tiktok": "tiktok",
    "youtube-shorts": "tiktok",
}

TEMPLATE_FAMILIES: dict[ContentKind, str] = {
    ContentKind.TEXT: "VideoTextoSimples",
    ContentKind.IMAGE: "VideoImagemTituloSubtituloMusica",
    ContentKind.VIDEO: "VideoTituloSubtituloMusica",
}

# Default durations (frames @ 30fps) registered with each composition
SHORT_DURATION_FRAMES: dict[ContentKind, int] = {
    ContentKind.TEXT: 150,
    ContentKind.IMAGE: 300,
    ContentKind.VIDEO: 300,
}
LONG_FORM_DURATION_FRAMES = 900


def _build_template_table() -> dict[tuple[ContentKind, str], TemplateSelection]:
    table: dict[tuple[ContentKind, str], TemplateSelection] = {}
    for kind, family in TEMPLATE_FAMILIES.items():
        for format_key, preset_name in FORMAT_KEYS.items():
            preset = PRESETS[preset_name]
            table[(kind, format_key)] = TemplateSelection(
                template_id=f"{family}{preset.template_suffix}",
                content_kind=kind,
                format_key=format_key,
                geometry=preset.geometry,
                default_duration_frames=(
                    LONG_FORM_DURATION_FRAMES if preset.long_form else SHORT_DURATION_FRAMES[kind]
                ),
            )
    return table


TEMPLATE_TABLE = _build_template_table()


def normalize_format_key(format_key: str | None) -> str:
    """Canonical spelling of a format key, or the default when unknown."""
    if not format_key:
        return DEFAULT_FORMAT_KEY
    key = format_key.strip().lower().replace("_", "-")
    return key if key in FORMAT_KEYS else DEFAULT_FORMAT_KEY


def select_template(content_kind: ContentKind | str, format_key: str | None) -> TemplateSelection:
    """Pick the template id and geometry for a content kind and format key.

    Never raises for an unrecognised format key: it falls back to landscape.
    """
    kind = ContentKind(content_kind)
    return TEMPLATE_TABLE[(kind, normalize_format_key(format_key))]


def list_templates() -> list[dict[str, Any]]:
    """All (content kind, format key) combinations, for discovery endpoints."""
    return [selection.to_dict() for selection in TEMPLATE_TABLE.values()]


def list_format_keys() -> dict[str, dict[str, Any]]:
    """Format keys with their geometry."""
    return {key: asdict(PRESETS[preset].geometry) for key, preset in FORMAT_KEYS.items()}


def duration_to_frames(duration_seconds: float, fps: int = DEFAULT_FPS) -> int:
    """Convert a duration in seconds to a whole number of frames (at least one)."""
    return max(1, round(duration_seconds * fps))
