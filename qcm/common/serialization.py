"""
Serialization Utilities

This module converts domain objects to JSON-compatible dictionaries and back,
handling datetimes, enums, sets and nested dataclasses.
"""

import json
import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar
from dataclasses import is_dataclass, fields

# Type variable for generic typing
T = TypeVar('T', bound='SerializableMixin')


def serialize(obj: Any, exclude_none: bool = False) -> Any:
    """
    Serialize an object to JSON-compatible Python data.

    Args:
        obj: The object to serialize
        exclude_none: Whether to drop None values from mappings

    Returns:
        Plain data made of dicts, lists, strings and numbers
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, datetime.datetime):
        return obj.isoformat()

    if isinstance(obj, datetime.date):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return obj.value

    # Sets have no order; sort so that stored forms are stable
    if isinstance(obj, (set, frozenset)):
        return sorted(serialize(item, exclude_none) for item in obj)

    if isinstance(obj, (list, tuple)):
        return [serialize(item, exclude_none) for item in obj]

    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if exclude_none and value is None:
                continue
            result[str(key) if not isinstance(key, str) else key] = serialize(value, exclude_none)
        return result

    if hasattr(obj, 'to_dict') and callable(getattr(obj, 'to_dict')):
        return serialize(obj.to_dict(), exclude_none)

    if is_dataclass(obj):
        return serialize(
            {f.name: getattr(obj, f.name) for f in fields(obj)},
            exclude_none
        )

    return str(obj)


def parse_datetime(value: Any) -> Optional[datetime.datetime]:
    """
    Parse an ISO-8601 string into an aware datetime.

    Naive values are taken to be UTC.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    """
    Serialize an object to a JSON string.

    Args:
        obj: The object to serialize
        pretty: Whether to format the JSON with indentation
        exclude_none: Whether to exclude None values

    Returns:
        JSON string representation
    """
    indent = 2 if pretty else None
    return json.dumps(serialize(obj, exclude_none), indent=indent, ensure_ascii=False, default=str)


class SerializableMixin:
    """
    Mixin that provides serialization capabilities to a class.

    Classes using this mixin must define:
    1. __serializable_fields__ - list of field names to include in serialization
    2. __optional_fields__ - list of field names that are optional during deserialization
    """

    __serializable_fields__: List[str] = []
    __optional_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert the object to a dictionary."""
        result = {}
        for field_name in self.__serializable_fields__:
            if hasattr(self, field_name):
                result[field_name] = serialize(getattr(self, field_name))
        return result

    def to_json(self, pretty: bool = False) -> str:
        """Convert the object to a JSON string."""
        return to_json(self.to_dict(), pretty)

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create an instance from a dictionary."""
        init_kwargs = {}
        for field_name in cls.__serializable_fields__:
            if field_name in data:
                init_kwargs[field_name] = data[field_name]
            elif field_name not in cls.__optional_fields__:
                raise ValueError(f"Missing required field: {field_name}")

        return cls(**init_kwargs)

    @classmethod
    def from_json(cls: Type[T], json_str: str) -> T:
        """Create an instance from a JSON string."""
        return cls.from_dict(json.loads(json_str))
