import re
import uuid
from typing import Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(value: Optional[str], default: str = "") -> str:
    slug = _NON_ALNUM.sub("-", (value or "").strip().lower()).strip("-")
    return slug or default


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def serialize_model(model) -> dict:
    """API shape: camelCase keys, ISO dates, no nulls."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
