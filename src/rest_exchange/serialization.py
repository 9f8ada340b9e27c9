"""
Pluggable JSON serialization for rest_exchange.

The engine and response envelope only depend on the SerializationHelper
protocol; DefaultSerializationHelper is the stdlib ``json`` variant.
"""

import dataclasses
import json
from typing import Any, Dict, Optional, Type, TypeVar

from typing_extensions import Protocol, runtime_checkable

T = TypeVar("T")


@runtime_checkable
class SerializationHelper(Protocol):
    """Capability interface for JSON (de)serialization."""

    def serialize_json(self, obj: Any, pretty: bool = True) -> str:
        """Serialize an object to a JSON string."""
        ...

    def deserialize_json(self, json_text: str, cls: Optional[Type[T]] = None) -> Any:
        """Deserialize a JSON string, optionally into an instance of ``cls``."""
        ...


class DefaultSerializationHelper:
    """
    Default serialization helper backed by the standard ``json`` module.

    Dataclass instances are converted to dicts before encoding. With
    ``ignore_null`` set, keys whose value is None are left out at every
    nesting level.
    """

    def __init__(
        self,
        ignore_null: bool = True,
        indent: int = 2,
        **dumps_options: Any,
    ) -> None:
        self.ignore_null = ignore_null
        self.indent = indent
        self._dumps_options = dumps_options

    def serialize_json(self, obj: Any, pretty: bool = True) -> str:
        value = self._prepare(obj)
        return json.dumps(
            value,
            indent=self.indent if pretty else None,
            separators=None if pretty else (",", ":"),
            **self._dumps_options,
        )

    def deserialize_json(self, json_text: str, cls: Optional[Type[T]] = None) -> Any:
        """
        Deserialize ``json_text``.

        Args:
            json_text: JSON document
            cls: Optional target type. Dataclasses are built from a JSON
                 object by keyword; other types must match the decoded value.

        Raises:
            ValueError: If the text is not valid JSON
            TypeError: If the decoded value does not fit ``cls``
        """
        value = json.loads(json_text)
        if cls is None:
            return value

        if dataclasses.is_dataclass(cls):
            if not isinstance(value, dict):
                raise TypeError(
                    f"cannot build {cls.__name__} from JSON {type(value).__name__}"
                )
            names = {f.name for f in dataclasses.fields(cls) if f.init}
            return cls(**{k: v for k, v in value.items() if k in names})

        if not isinstance(value, cls):
            raise TypeError(f"expected JSON {cls.__name__}, got {type(value).__name__}")
        return value

    def _prepare(self, obj: Any) -> Any:
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            obj = dataclasses.asdict(obj)
        if isinstance(obj, dict):
            prepared: Dict[Any, Any] = {}
            for key, value in obj.items():
                if value is None and self.ignore_null:
                    continue
                prepared[key] = self._prepare(value)
            return prepared
        if isinstance(obj, (list, tuple)):
            return [self._prepare(item) for item in obj]
        return obj
