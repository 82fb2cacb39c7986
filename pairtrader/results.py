"""Result type for operations whose non-success outcomes are expected.

Callers branch on ``status`` instead of catching exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ResultStatus(str, Enum):
    OK = "ok"
    REJECTED = "rejected"
    NOT_FOUND = "not_found"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class Result(Generic[T]):
    status: ResultStatus
    value: Optional[T] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.OK

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ResultStatus.OK, value)

    @classmethod
    def rejected(cls, reason: str) -> "Result":
        return cls(ResultStatus.REJECTED, reason=reason)

    @classmethod
    def not_found(cls, reason: str) -> "Result":
        return cls(ResultStatus.NOT_FOUND, reason=reason)

    @classmethod
    def insufficient_data(cls, reason: str) -> "Result":
        return cls(ResultStatus.INSUFFICIENT_DATA, reason=reason)
