"""Conversion of validated CSV rows into application records."""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from .errors import ConversionError
from .fields import FIELD_SPECS
from .models import CANONICAL_FIELDS, Application, FieldMapping, RawRow
from .normalize import normalize_enum, parse_date, split_list

logger = logging.getLogger(__name__)


def generate_id(index: int) -> str:
    return f"imported-{uuid.uuid4().hex[:12]}-{index}"


def build_application(
    values: dict[str, Any],
    index: int,
    now: Optional[datetime] = None,
    day_first: bool = False,
) -> Application:
    """Build an Application from canonical field values (a mapped row or a merge preview)."""
    now = now or datetime.now()
    company = str(values.get("company") or "").strip()
    if not company:
        raise ConversionError(f"Row {index + 1} has no company", row=index)

    data: dict[str, Any] = {"id": generate_id(index), "created_at": now, "updated_at": now}
    for field in CANONICAL_FIELDS:
        kind = FIELD_SPECS[field].kind
        value = values.get(field)

        if kind == "list":
            data[field] = split_list(value)
        elif kind == "date":
            data[field] = parse_date(value, day_first=day_first)
        elif kind == "enum":
            data[field] = normalize_enum(field, value)[0]
        else:
            data[field] = str(value or "").strip()

    data["company"] = company
    if data["applied_date"] is None:
        data["applied_date"] = now.date()

    try:
        return Application(**data)
    except ValidationError as e:
        raise ConversionError(f"Row {index + 1} could not be converted: {e}", row=index) from e


def convert_row(
    row: RawRow,
    mapping: FieldMapping,
    index: int,
    now: Optional[datetime] = None,
    day_first: bool = False,
) -> Application:
    """Convert one mapped CSV row; raises ConversionError when company is missing."""
    values = {field: row.get(column) for field, column in mapping.items() if field in CANONICAL_FIELDS}
    return build_application(values, index, now=now, day_first=day_first)
