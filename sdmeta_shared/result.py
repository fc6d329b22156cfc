"""
Result pattern for error handling without exceptions.
Every parser and the extraction pipeline return Result[T] instead of raising.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar, cast

from .types import ErrorCode

T = TypeVar("T")
U = TypeVar("U")

@dataclass
class Result(Generic[T]):
    """
    Result pattern for safe error handling.

    Usage:
        def extract(buffer: bytes) -> Result[SDMetadata]:
            if not buffer:
                return Result.Err("INVALID_INPUT", "Empty buffer")
            return Result.Ok(SDMetadata(prompt="..."))
    """
    ok: bool
    data: Optional[T] = None
    error: Optional[str] = None
    code: str = "OK"  # OK, NOT_FOUND, UNSUPPORTED, PARSE_ERROR, etc.
    meta: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def Ok(data: T, **meta: Any) -> "Result[T]":
        """Create a successful result with data and optional metadata."""
        return Result(ok=True, data=data, code="OK", meta=meta)

    @staticmethod
    def Err(code: ErrorCode | str | Enum, error: str, **meta: Any) -> "Result[T]":
        """Create an error result with code, message, and optional metadata."""
        code_value = code.value if isinstance(code, Enum) else code
        return Result(ok=False, error=error, code=str(code_value), meta=meta)

    @property
    def success(self) -> bool:
        """Alias of `ok` matching the `{success, data, error}` wire contract."""
        return self.ok

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        """Map the data if ok, otherwise return self."""
        if self.ok and self.data is not None:
            return Result.Ok(fn(self.data), **self.meta)
        return cast(Result[U], self)

    def unwrap(self) -> T:
        """Get data or raise ValueError if error."""
        if self.ok and self.data is not None:
            return self.data
        raise ValueError(f"[{self.code}] {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Get data or return default if error."""
        return self.data if (self.ok and self.data is not None) else default

    def to_dict(self) -> dict[str, Any]:
        """Serialize as `{success, data?, error?}`; data is flattened when it has `to_dict`."""
        out: dict[str, Any] = {"success": self.ok}
        if self.data is not None:
            to_dict = getattr(self.data, "to_dict", None)
            out["data"] = to_dict() if callable(to_dict) else self.data
        if self.error is not None:
            out["error"] = self.error
        return out
