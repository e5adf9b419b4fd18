"""
Descriptor data type names mapped onto OPC UA built-in type names.

Descriptors spell types loosely (xs:double, Double, int, xsd:unsignedShort ...).
Unknown names fall back to Double so noisy descriptors stay loadable.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("DataTypes")

DEFAULT_TYPE = "Double"

_TYPE_MAP = {
    'bool': 'Boolean', 'boolean': 'Boolean',
    'string': 'String', 'normalizedstring': 'String', 'token': 'String',
    'anyuri': 'String', 'qname': 'String', 'notation': 'String',
    'base64binary': 'String', 'hexbinary': 'String',
    'byte': 'Byte', 'unsignedbyte': 'Byte',
    'sbyte': 'SByte',
    'short': 'Int16', 'int16': 'Int16',
    'unsignedshort': 'UInt16', 'uint16': 'UInt16',
    'int': 'Int32', 'integer': 'Int32', 'int32': 'Int32',
    'unsignedint': 'UInt32', 'uint32': 'UInt32',
    'positiveinteger': 'UInt32', 'nonpositiveinteger': 'UInt32',
    'nonnegativeinteger': 'UInt32', 'negativeinteger': 'UInt32',
    'long': 'Int64', 'int64': 'Int64',
    'unsignedlong': 'UInt64', 'uint64': 'UInt64',
    'float': 'Float', 'single': 'Float',
    'double': 'Double', 'decimal': 'Double',
    'datetime': 'DateTime', 'date': 'DateTime', 'time': 'DateTime',
    'gyear': 'DateTime', 'gmonth': 'DateTime', 'gday': 'DateTime',
    'gyearmonth': 'DateTime', 'gmonthday': 'DateTime', 'duration': 'DateTime',
}

INTEGER_TYPES = {'Byte', 'SByte', 'Int16', 'UInt16', 'Int32', 'UInt32', 'Int64', 'UInt64'}
FLOAT_TYPES = {'Float', 'Double'}
NUMERIC_TYPES = INTEGER_TYPES | FLOAT_TYPES

_TRUE_TEXT = {'true', '1', 'yes', 'on'}
_FALSE_TEXT = {'false', '0', 'no', 'off', ''}


def canonical_type(name: Optional[str]) -> str:
    """Return the UA built-in type name for a descriptor type name."""
    if name is None or not name.strip():
        return DEFAULT_TYPE
    t = name.strip()
    for prefix in ('xs:', 'xsd:'):
        if t.lower().startswith(prefix):
            t = t[len(prefix):]
            break
    mapped = _TYPE_MAP.get(t.lower())
    if mapped is None:
        logger.warning(f"Unknown data type '{name}', defaulting to {DEFAULT_TYPE}")
        return DEFAULT_TYPE
    return mapped


def is_numeric(name: Optional[str]) -> bool:
    return canonical_type(name) in NUMERIC_TYPES


def default_value(name: Optional[str]) -> Any:
    """Initial value for a freshly created variable of this type."""
    t = canonical_type(name)
    if t == 'Boolean':
        return False
    if t == 'String':
        return ""
    if t == 'DateTime':
        return datetime.now(timezone.utc).replace(tzinfo=None)
    if t in INTEGER_TYPES:
        return 0
    return 0.0


def parse_number(text: Any) -> Optional[float]:
    """Parse a finite number from text, returning None when it is not one."""
    if isinstance(text, bool):
        return None
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def coerce(value: Any, name: Optional[str]) -> Any:
    """
    Convert a resolved value (number or text) to the Python type of the target.

    Raises:
        ValueError: if the value cannot represent the target type.
    """
    t = canonical_type(name)
    if t == 'Boolean':
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        text = str(value).strip().lower()
        if text in _TRUE_TEXT:
            return True
        if text in _FALSE_TEXT:
            return False
        raise ValueError(f"Cannot convert {value!r} to Boolean")
    if t == 'String':
        return "" if value is None else str(value)
    if t == 'DateTime':
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value).strip())
    number = float(value) if isinstance(value, bool) else parse_number(value)
    if number is None:
        raise ValueError(f"Cannot convert {value!r} to {t}")
    if t in INTEGER_TYPES:
        return int(round(number))
    return number
