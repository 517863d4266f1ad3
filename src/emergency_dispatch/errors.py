from __future__ import annotations


class DispatchError(Exception):
    """Base class for errors raised by the dispatch core."""


class InvalidArgumentError(DispatchError, ValueError):
    """A required argument was missing or violated a construction invariant."""


def require(value, name: str):
    if value is None:
        raise InvalidArgumentError(f"{name} is required")
    return value
