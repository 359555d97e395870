"""
Conversion of audit snapshots to values a JSON column accepts
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import DeclarativeMeta


def _row_to_dict(row: Any) -> dict:
    """Column values of an ORM instance (relationships are not followed)"""
    return {attr.key: getattr(row, attr.key) for attr in sa_inspect(row).mapper.column_attrs}


def sanitize_for_json(value: Any) -> Any:
    """
    Recursively convert a snapshot for audit_logs.old_values / new_values.

    Day counts (Decimal) become floats, dates become ISO strings, enums their
    value. Pydantic models and ORM rows are flattened to dicts first.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): sanitize_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_json(item) for item in value]
    if isinstance(value, BaseModel):
        return sanitize_for_json(value.model_dump())
    if isinstance(type(value), DeclarativeMeta):
        return sanitize_for_json(_row_to_dict(value))
    return str(value)
