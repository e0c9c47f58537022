from dataclasses import dataclass, asdict, fields
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T", int, float)


@dataclass
class BaseConfig:
    """A base class for configurations."""

    def to_dict(self) -> dict:
        return asdict(self)

    def fields(self) -> list[str]:
        return [f.name for f in fields(self)]

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "BaseConfig":
        if payload is None:
            return cls()  # type: ignore[misc]
        if not isinstance(payload, dict):
            raise TypeError("Input must be a dictionary.")
        allowed = {field.name for field in fields(cls)}
        kwargs = {key: payload[key] for key in allowed if key in payload}
        return cls(**kwargs)  # type: ignore[arg-type]


def env_str(environ: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    """Return a non-empty environment value, or `default`."""
    value = environ.get(name)
    if not value:
        return default
    return value


def env_number(
    environ: Mapping[str, str],
    name: str,
    default: T,
    cast: Callable[[str], T] = int,
) -> T:
    """Parse a numeric environment variable.

    Missing values return `default` silently; unparseable values log a
    warning and return `default`.
    """
    value = environ.get(name)
    if not value:
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning("Invalid number for %s (%r), using default: %s", name, value, default)
        return default
