"""
Tagged Result Type
==================
``Ok``/``Err`` values threaded through the analysis retry loop so that
retry decisions read properties of the returned failure instead of
inspecting exception types.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]

__all__ = ["Ok", "Err", "Result"]
