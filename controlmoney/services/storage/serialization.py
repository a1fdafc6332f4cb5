"""
Value Serialization Helpers

Conversions shared by the storage backends and the sync service:
- dates to and from ISO-8601 text (remote rows)
- booleans to and from 0/1 integers (remote rows)
- the JSON backup format, where every date is written as
  {"__type": "Date", "value": "<ISO-8601>"}
- the JSON record format of the local store (dates and Decimals tagged)
- backend-neutral encoding used for dataset checksums

DESIGN DECISION: date_to_string never raises. A bad value in one field
must not make a whole record unwritable, so it is replaced by "now" and
a warning is logged.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from dateutil import parser as date_parser

from controlmoney.audit import get_logger


logger = get_logger(__name__)

DATE_TYPE_TAG = "Date"
DECIMAL_TYPE_TAG = "Decimal"


def _local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def date_to_string(value: Any) -> str:
    """
    Convert a date-like value to ISO-8601 text.
    
    Accepts datetimes, dates, ISO strings and epoch timestamps in seconds.
    Anything that is not a valid date yields the current time.
    """
    try:
        if isinstance(value, datetime):
            return _local_naive(value).isoformat()
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day).isoformat()
        if isinstance(value, str):
            return _local_naive(date_parser.isoparse(value.strip())).isoformat()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value).isoformat()
        raise TypeError(f"unsupported date value type: {type(value).__name__}")
    except (TypeError, ValueError, OverflowError, OSError) as e:
        logger.warning(
            "date_serialization_failed",
            value=repr(value),
            error=str(e),
        )
        return datetime.now().isoformat()


def string_to_date(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 text from a row. Empty values map to None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _local_naive(value)
    try:
        return _local_naive(date_parser.isoparse(str(value).strip()))
    except (TypeError, ValueError, OverflowError) as e:
        logger.warning("date_parse_failed", value=repr(value), error=str(e))
        return None


def bool_to_int(value: Any) -> int:
    return 1 if value else 0


def int_to_bool(value: Any) -> bool:
    return bool(value) and value != "0"


# =============================================================================
# BACKUP FORMAT
# =============================================================================

def _encode_backup_value(value: Any, tag_decimals: bool = False) -> Any:
    if isinstance(value, datetime):
        return {"__type": DATE_TYPE_TAG, "value": value.isoformat()}
    if isinstance(value, date):
        return {
            "__type": DATE_TYPE_TAG,
            "value": datetime(value.year, value.month, value.day).isoformat(),
        }
    if isinstance(value, Decimal):
        if tag_decimals:
            return {"__type": DECIMAL_TYPE_TAG, "value": str(value)}
        return str(value)
    if isinstance(value, dict):
        return {key: _encode_backup_value(item, tag_decimals) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_backup_value(item, tag_decimals) for item in value]
    return value


def _decode_backup_value(value: Any) -> Any:
    if isinstance(value, dict):
        if value.get("__type") == DATE_TYPE_TAG and "value" in value:
            return date_parser.isoparse(value["value"])
        if value.get("__type") == DECIMAL_TYPE_TAG and "value" in value:
            return Decimal(value["value"])
        return {key: _decode_backup_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode_backup_value(item) for item in value]
    return value


def encode_backup(data: dict[str, list[dict]]) -> str:
    """Serialize an export map to backup JSON."""
    return json.dumps(_encode_backup_value(data), indent=2)


def decode_backup(text: str) -> dict[str, list[dict]]:
    """
    Parse backup JSON back into an export map.
    
    Raises:
        ValueError: If the text is not a JSON object
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Backup must be a JSON object keyed by table name")
    return _decode_backup_value(data)


# =============================================================================
# LOCAL RECORD FORMAT
# =============================================================================

def encode_record(record: dict) -> str:
    """
    JSON text for a record in the local store.
    
    Unlike backups, Decimals are tagged too, so a record reads back with
    the same Python types it was written with.
    """
    return json.dumps(_encode_backup_value(record, tag_decimals=True))


def decode_record(text: str) -> dict:
    """
    Parse a stored record.
    
    Raises:
        ValueError: If the text is not a JSON object
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Stored record must be a JSON object")
    return _decode_backup_value(data)


# =============================================================================
# CHECKSUMS
# =============================================================================

def to_neutral(value: Any) -> Any:
    """
    Encode a record so that both backends produce the same text.
    
    Decimals are normalized (100.50 and 100.5 are the same amount) and
    dates become ISO strings.
    """
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, float):
        return format(Decimal(str(value)).normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_neutral(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_neutral(item) for item in value]
    return value


def checksum(parts: list[str]) -> str:
    """SHA-256 over the joined parts."""
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def table_fingerprint(table: str, records: list[dict], sample_size: int = 5) -> str:
    """table:count:sample text used as checksum input."""
    sample = json.dumps(to_neutral(records[:sample_size]), sort_keys=True)
    return f"{table}:{len(records)}:{sample}"
