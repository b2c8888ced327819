from dataclasses import dataclass
from typing import Generic, TypeVar

from dari_insights.errors import EngineError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    error: EngineError

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.error)


Result = Success[T] | Failure


def unwrap(result: "Result[T]") -> T:
    """Return the success value or raise the wrapped error."""
    if isinstance(result, Failure):
        raise result.error
    return result.value
