"""
Helpers shared by the SQLAlchemy repositories of every service.
"""
import asyncio
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Mapping

from sqlalchemy.orm import Session

from libs.common.timezone import ensure_utc


class SQLRepositoryBase:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def _run_in_thread(self, func: Callable[[], Any]):
        return await asyncio.to_thread(func)


def utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value)


def to_float(value: Decimal | float | None) -> float | None:
    return float(value) if value is not None else None


def load_json(value: Any, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def set_clause(fields: Mapping[str, Any], columns: Mapping[str, str]) -> tuple[str, Dict[str, Any]]:
    """
    Build "col = :col, ..." for an UPDATE from camelCase field names.

    Raises:
        KeyError: a field has no mapped column
    """
    parts = []
    params: Dict[str, Any] = {}
    for name, value in fields.items():
        column = columns[name]
        parts.append(f"{column} = :{column}")
        params[column] = value.value if hasattr(value, "value") else value
    return ", ".join(parts), params


def in_clause(prefix: str, values: Iterable[Any]) -> tuple[str, Dict[str, Any]]:
    """Expand a list into ":p0, :p1, ..." placeholders for IN (...)."""
    params = {f"{prefix}{i}": value for i, value in enumerate(values)}
    return ", ".join(f":{key}" for key in params), params
