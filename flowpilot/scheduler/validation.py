"""
Job specification validation.

Runs before a job is created; a rejected spec never reaches the Job Store.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import (
    CAPTION_MAX_LENGTH,
    MAX_HASHTAGS,
    PROMPT_MAX_LENGTH,
    PROMPT_MIN_LENGTH,
    SUPPORTED_PLATFORMS,
    VALID_ASPECT_RATIOS,
    VALID_DURATIONS,
    VALID_STYLES,
)
from ..errors import ValidationError
from .entities import ProductionSpec

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_HASHTAG_RE = re.compile(r"^[\w\u0e00-\u0e7f]+$")


def sanitize_input(text: str) -> str:
    """Trim, strip markup tags and control characters."""
    return _CONTROL_RE.sub("", _TAG_RE.sub("", text.strip()))


def validate_spec(data: dict[str, Any]) -> ProductionSpec:
    """
    Validate raw production parameters and build a ProductionSpec.

    Raises:
        ValidationError: On the first invalid field
    """
    instructions = data.get("instructions")
    if not isinstance(instructions, str):
        raise ValidationError("instructions must be a string", field="instructions")
    instructions = sanitize_input(instructions)
    if len(instructions) < PROMPT_MIN_LENGTH:
        raise ValidationError(
            f"instructions must be at least {PROMPT_MIN_LENGTH} characters",
            field="instructions",
        )
    if len(instructions) > PROMPT_MAX_LENGTH:
        raise ValidationError(
            f"instructions must be at most {PROMPT_MAX_LENGTH} characters",
            field="instructions",
        )

    duration = data.get("duration", 15)
    if isinstance(duration, bool) or duration not in VALID_DURATIONS:
        raise ValidationError(
            f"duration must be one of {', '.join(str(d) for d in VALID_DURATIONS)}",
            field="duration",
        )

    aspect_ratio = data.get("aspect_ratio", "9:16")
    if aspect_ratio not in VALID_ASPECT_RATIOS:
        raise ValidationError(
            f"aspect_ratio must be one of {', '.join(VALID_ASPECT_RATIOS)}",
            field="aspect_ratio",
        )

    style = data.get("style", "dynamic")
    if style not in VALID_STYLES:
        raise ValidationError(
            f"style must be one of {', '.join(VALID_STYLES)}",
            field="style",
        )

    return ProductionSpec(
        instructions=instructions,
        duration=int(duration),
        aspect_ratio=aspect_ratio,
        style=style,
        include_music=bool(data.get("include_music", True)),
        include_voiceover=bool(data.get("include_voiceover", False)),
    )


def validate_targets(targets: Optional[list[str]]) -> list[str]:
    """Normalize and check distribution targets; duplicates are dropped in order."""
    normalized: list[str] = []
    for target in targets or []:
        name = str(target).strip().lower()
        if name not in SUPPORTED_PLATFORMS:
            raise ValidationError(
                f"Unsupported target '{target}'. Supported: {', '.join(SUPPORTED_PLATFORMS)}",
                field="targets",
            )
        if name not in normalized:
            normalized.append(name)
    return normalized


def validate_caption(caption: Optional[str]) -> Optional[str]:
    if caption is None:
        return None
    caption = sanitize_input(caption)
    if len(caption) > CAPTION_MAX_LENGTH:
        raise ValidationError(
            f"caption must be at most {CAPTION_MAX_LENGTH} characters",
            field="caption",
        )
    return caption or None


def validate_hashtags(hashtags: Optional[list[str]]) -> list[str]:
    """Hashtags are stored without the leading '#'."""
    cleaned: list[str] = []
    for tag in hashtags or []:
        tag = str(tag).strip().lstrip("#")
        if not tag:
            continue
        if not _HASHTAG_RE.match(tag):
            raise ValidationError(f"Invalid hashtag: {tag}", field="hashtags")
        cleaned.append(tag)
    if len(cleaned) > MAX_HASHTAGS:
        raise ValidationError(f"At most {MAX_HASHTAGS} hashtags allowed", field="hashtags")
    return cleaned


def validate_scheduled_at(scheduled_at: Optional[str]) -> Optional[str]:
    """
    Accept an ISO-8601 timestamp and normalize it to the store's UTC format.

    Naive timestamps are taken as UTC.
    """
    if scheduled_at is None:
        return None
    try:
        moment = datetime.fromisoformat(scheduled_at.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(
            f"scheduled_at is not an ISO-8601 timestamp: {scheduled_at}",
            field="scheduled_at",
        ) from None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def validate_max_retries(max_retries: Optional[int], default: int) -> int:
    if max_retries is None:
        return default
    if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
        raise ValidationError("max_retries must be a non-negative integer", field="max_retries")
    return max_retries
