import base64
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from dateutil.parser import isoparse
from bson.codec_options import TypeEncoder, TypeRegistry
from bson.decimal128 import Decimal128

DATE_MARKER = "$date"
OID_MARKER = "$oid"

# ISO-8601 date-time prefix: YYYY-MM-DDTHH:MM:SS
_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


class PendingObjectId:
    """An ``$oid`` value the codec could not turn into an ObjectId.

    It is kept as-is until the driver encodes the operation, where
    :class:`PendingObjectIdEncoder` raises the driver's own ``InvalidId``.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, PendingObjectId) and other.value == self.value

    def __hash__(self) -> int:
        return hash((PendingObjectId, repr(self.value)))

    def __repr__(self) -> str:
        return f"PendingObjectId({self.value!r})"


class PendingObjectIdEncoder(TypeEncoder):
    python_type = PendingObjectId  # type: ignore[assignment]

    def transform_python(self, value: PendingObjectId) -> ObjectId:
        return ObjectId(value.value)


def build_type_registry() -> TypeRegistry:
    return TypeRegistry([PendingObjectIdEncoder()])


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or epoch milliseconds) into an aware UTC datetime.

    Returns None when the value is not a representable date.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    try:
        parsed = isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_date_like(value: Any) -> bool:
    return isinstance(value, str) and _ISO_PREFIX.match(value) is not None


def normalize(value: Any) -> Any:
    """Recursively convert wire JSON into the values MongoDB expects.

    - ``{"$date": "..."}`` becomes a datetime; an unparseable date leaves the
      mapping untouched.
    - ``{"$oid": "..."}`` becomes an ObjectId. Malformed hex is not rejected
      here; it fails when the operation is sent to the driver.
    - strings starting with ``YYYY-MM-DDTHH:MM:SS`` become datetimes when they
      parse, otherwise they are kept as they are.

    Marker mappings are leaves. Never raises.
    """
    if isinstance(value, dict):
        if DATE_MARKER in value:
            parsed = parse_date(value[DATE_MARKER])
            return parsed if parsed is not None else value
        if OID_MARKER in value:
            raw = value[OID_MARKER]
            if isinstance(raw, str) and ObjectId.is_valid(raw):
                return ObjectId(raw)
            return PendingObjectId(raw)
        return {k: normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    if is_date_like(value):
        parsed = parse_date(value)
        return parsed if parsed is not None else value
    return value


def format_date(value: datetime) -> str:
    """ISO-8601 in UTC with milliseconds and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def to_jsonable(obj: Any) -> Any:
    """Recursively convert Mongo objects (e.g., ObjectId) to JSON-serializable types."""
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, Decimal128):
        # Convert Decimal128 to string to preserve precision in JSON
        return str(obj.to_decimal())
    if isinstance(obj, datetime):
        return format_date(obj)
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return base64.b64encode(obj).decode("ascii")
    if isinstance(obj, dict):
        return {k: to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(i) for i in obj]
    return obj
