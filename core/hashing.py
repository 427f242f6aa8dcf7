"""
Hashing Module - SHA256 Fingerprints

Canonical JSON serialization and SHA256 hashing for replay fingerprints
and tax result seals. Two replays of the same stream must produce the same
fingerprint, so serialization never goes through float.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import dataclasses
import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable


def _to_jsonable(o: Any) -> Any:
    if isinstance(o, Decimal):
        return str(o)
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    if isinstance(o, Enum):
        return o.value
    if isinstance(o, (set, frozenset)):
        return sorted(o, key=str)
    if hasattr(o, 'to_dict'):
        return o.to_dict()
    if dataclasses.is_dataclass(o) and not isinstance(o, type):
        return {f.name: getattr(o, f.name) for f in dataclasses.fields(o)}
    if hasattr(o, 'model_dump'):
        return o.model_dump(mode='python')
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


def canonical_json_dumps(obj: Any) -> str:
    """
    Serialize object to canonical JSON string.

    - Keys sorted alphabetically, no whitespace
    - Decimals as exact strings
    - Dates in ISO format, enums by value
    - Ledger records through their to_dict(), other dataclasses and
      pydantic models field by field

    Example:
        >>> canonical_json_dumps({"amount": Decimal("123.45"), "date": date(2024, 1, 15)})
        '{"amount":"123.45","date":"2024-01-15"}'
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        default=_to_jsonable,
        ensure_ascii=True
    )


def calculate_sha256(data: Any) -> str:
    """SHA256 of the canonical JSON of data, prefixed with 'sha256:'."""
    json_str = canonical_json_dumps(data)
    return f"sha256:{hashlib.sha256(json_str.encode('utf-8')).hexdigest()}"


def fingerprint(**sections: Iterable[Any]) -> str:
    """
    Fingerprint named sequences of records.

    Example:
        >>> fingerprint(disposals=result.disposals, income=result.income)
        'sha256:...'
    """
    return calculate_sha256({name: list(records) for name, records in sections.items()})
