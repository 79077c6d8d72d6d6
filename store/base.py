"""
Payload base class — defines how API JSON maps to/from frozen dataclasses.
Subclass with @dataclass(frozen=True) to create wire types.

The escrow API speaks camelCase JSON with Mongo-style identifiers:
- keys are camelCase versions of the snake_case field names
- a field may override its wire name with metadata={"api": "_id"}
- timestamps are ISO-8601 strings (a trailing "Z" is accepted) or epoch ms
- nested payloads, enums and lists are rebuilt from their declared types
"""

import enum
import json
import dataclasses
import typing
from datetime import datetime, date, timezone
from decimal import Decimal


class _JSONEncoder(json.JSONEncoder):
    """Handles datetime, date, Decimal, Enum, and dataclass serialization."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, enum.Enum):
            return obj.value
        if isinstance(obj, Payload):
            return obj.to_api()
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        return super().default(obj)


def camel_case(name: str) -> str:
    """snake_case → camelCase (``price_per_share`` → ``pricePerShare``)."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def parse_timestamp(value) -> datetime:
    """Parse an API timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _api_name(f: dataclasses.Field) -> str:
    return f.metadata.get("api", camel_case(f.name))


def _coerce(tp, value):
    """Convert a decoded JSON value into the declared field type."""
    if value is None:
        return None

    origin = typing.get_origin(tp)
    if origin is typing.Union:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        return _coerce(args[0], value) if len(args) == 1 else value
    if origin in (tuple, list):
        args = typing.get_args(tp)
        item_tp = args[0] if args else typing.Any
        items = [_coerce(item_tp, v) for v in value]
        return tuple(items) if origin is tuple else items

    if isinstance(tp, type):
        if issubclass(tp, Payload):
            return tp.from_api(value)
        if issubclass(tp, enum.Enum):
            return tp(value)
        if tp is datetime:
            return parse_timestamp(value)
        if tp is float:
            return float(value)
        if tp is int and not isinstance(value, bool):
            return int(value)
        if tp is Decimal:
            return Decimal(str(value))
    return value


def _encode(value):
    if isinstance(value, Payload):
        return value.to_api()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (tuple, list)):
        return [_encode(v) for v in value]
    return value


class Payload:
    """
    Base class for immutable objects exchanged with the escrow API.

    Subclass as a frozen dataclass:

        @dataclass(frozen=True)
        class Trader(Payload):
            username: str = ""
            first_name: str = ""
            is_verified: bool = False

    Then decode a response body:

        trader = Trader.from_api({"username": "jdoe", "firstName": "Jane"})
    """

    @classmethod
    def from_api(cls, data: dict):
        """Build an instance from an API dict. Unknown keys are ignored."""
        if not isinstance(data, dict):
            raise TypeError(f"{cls.__name__} expects a JSON object, got {type(data).__name__}")
        hints = typing.get_type_hints(cls)
        kwargs = {}
        for f in dataclasses.fields(cls):
            key = _api_name(f)
            if key in data:
                kwargs[f.name] = _coerce(hints.get(f.name, typing.Any), data[key])
            elif f.name in data:
                kwargs[f.name] = _coerce(hints.get(f.name, typing.Any), data[f.name])
        return cls(**kwargs)

    def to_api(self) -> dict:
        """Serialize back to the API's camelCase shape (None values omitted)."""
        out = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[_api_name(f)] = _encode(value)
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_api(), cls=_JSONEncoder)

    @classmethod
    def from_json(cls, json_str: str):
        return cls.from_api(json.loads(json_str))
