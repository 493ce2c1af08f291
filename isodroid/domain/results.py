"""Tagged result returned by every core gadget operation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


SUCCESS_PREFIX = "Success"
ERROR_PREFIX = "Error"


class ErrorKind(Enum):
    PRIVILEGE_DENIED = "privilege_denied"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    EXECUTION_FAILURE = "execution_failure"


@dataclass(frozen=True)
class Result:
    """Either `Ok(value)` or `Err(kind, message)`.

    The text form follows the privileged command convention:
    "Success", "Success:<value>" or "Error: <message>".
    """

    ok: bool
    value: Any = None
    kind: ErrorKind | None = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = None) -> Result:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> Result:
        return cls(ok=False, kind=kind, message=message)

    @classmethod
    def parse(cls, text: str) -> Result:
        """Read a textual result back into a Result.

        Anything that does not start with the success marker is an
        execution failure carrying the text as its message.
        """
        text = (text or "").strip()
        if text.startswith(SUCCESS_PREFIX):
            payload = text[len(SUCCESS_PREFIX):]
            if payload.startswith(":"):
                return cls.success(payload[1:].strip())
            return cls.success()
        if text.startswith(ERROR_PREFIX):
            message = text[len(ERROR_PREFIX):].lstrip(":").strip()
        else:
            message = text or "No output"
        return cls.failure(ErrorKind.EXECUTION_FAILURE, message)

    def __bool__(self) -> bool:
        return self.ok

    def __str__(self) -> str:
        if self.ok:
            if self.value is None:
                return SUCCESS_PREFIX
            return f"{SUCCESS_PREFIX}:{self.value}"
        return f"{ERROR_PREFIX}: {self.message}"
