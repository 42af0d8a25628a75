"""
Type-safe wrappers for Discord snowflake identifiers.

Accounts, communities, channels and messages are all addressed by 64-bit
snowflakes. Wrapping them keeps a guild id from being passed where a user id is
expected, while still comparing equal to the raw int/str forms that come back
from SQLite and from the Discord API.
"""

from __future__ import annotations

from typing import Union


class Snowflake:
    """
    Base class for snowflake wrappers.

    The value is held as an ``int``. Instances of different subclasses never
    compare equal, even when they wrap the same number.

    Example:
        >>> uid = UserID("123456789012345678")
        >>> uid.to_int()
        123456789012345678
        >>> uid == 123456789012345678
        True
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, int, "Snowflake"]) -> None:
        """
        Args:
            value: The snowflake as an int, a numeric string, or another wrapper
                of the same type.

        Raises:
            ValueError: If the value is not a non-negative integer snowflake.
        """
        if isinstance(value, Snowflake):
            if type(value) is not type(self):
                raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}")
            self._value = value._value
            return
        if isinstance(value, bool):
            raise ValueError(f"Cannot create {type(self).__name__} from bool")
        if isinstance(value, int):
            parsed = value
        elif isinstance(value, str):
            parsed = int(value.strip())
        else:
            raise ValueError(f"Cannot create {type(self).__name__} from {type(value).__name__}: {value}")
        if parsed < 0:
            raise ValueError(f"{type(self).__name__} must be non-negative, got {parsed}")
        self._value = parsed

    @classmethod
    def from_int(cls, value: int):
        """Create an identifier from an integer snowflake."""
        return cls(value)

    @classmethod
    def from_model(cls, model):
        """Create an identifier from any Discord model exposing ``.id``."""
        return cls(model.id)

    def to_int(self) -> int:
        """Return the snowflake as an ``int`` for Discord API and SQLite calls."""
        return self._value

    def __int__(self) -> int:
        return self._value

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snowflake):
            return type(other) is type(self) and other._value == self._value
        if isinstance(other, bool):
            return NotImplemented
        if isinstance(other, int):
            return self._value == other
        if isinstance(other, str):
            return str(self._value) == other.strip()
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._value))


class UserID(Snowflake):
    """Identifier of a Discord account."""

    __slots__ = ()


class GuildID(Snowflake):
    """Identifier of a community (Discord guild)."""

    __slots__ = ()


class ChannelID(Snowflake):
    """Identifier of a channel inside a community."""

    __slots__ = ()


class MessageID(Snowflake):
    """Identifier of a single message."""

    __slots__ = ()
