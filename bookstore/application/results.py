import asyncio
import logging
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from bookstore.domain.exceptions import DomainException

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

INTERNAL_ERROR = "INTERNAL_ERROR"
TIMEOUT = "TIMEOUT"


class Result(BaseModel, Generic[T]):
    """Uniform envelope returned by every public operation"""
    success: bool
    message: str
    data: Optional[T] = None
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, data=None, message: str = "OK") -> "Result":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, errors: List[str]) -> "Result":
        return cls(success=False, message=message, errors=errors)

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        data = fn(self.data) if self.data is not None else None
        return Result(success=self.success, message=self.message, data=data, errors=self.errors)


async def run_operation(
    name: str,
    operation: Awaitable[T],
    success_message: str,
    timeout: Optional[float] = None,
) -> Result[T]:
    """Runs one unit of work and folds its outcome into a Result.

    Domain errors become failures carrying their code. Anything else is logged
    with its traceback and reported as INTERNAL_ERROR; a timeout as TIMEOUT.
    The unit of work has already rolled back by the time either is reported.
    """
    try:
        data = await asyncio.wait_for(operation, timeout) if timeout else await operation
    except DomainException as e:
        logger.warning(f"{name} refused: [{e.code}] {e}")
        return Result.fail(str(e), [e.code])
    except asyncio.TimeoutError:
        logger.error(f"{name} timed out after {timeout}s")
        return Result.fail("Operation timed out", [TIMEOUT])
    except Exception:
        logger.exception(f"{name} failed unexpectedly")
        return Result.fail("Unexpected error, the operation was not applied", [INTERNAL_ERROR])

    return Result.ok(data, success_message)
