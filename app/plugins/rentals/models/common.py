from datetime import date
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator

from utils.date_helper import ensure_date


def coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    return ensure_date(value)


def coerce_number(value: Any) -> Any:
    """Form inputs arrive as strings, sometimes with a decimal comma."""
    if isinstance(value, str):
        text = value.strip().replace(" ", "")
        if not text:
            return None
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        return text
    return value


IsoDate = Annotated[date, BeforeValidator(coerce_date)]
OptionalIsoDate = Annotated[Optional[date], BeforeValidator(coerce_date)]
