from typing import Iterable

from pydantic import ValidationError


class LedgerError(Exception):
    """Base class for failures surfaced to callers as a failed Outcome."""

    kind = "ledger"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(LedgerError, ValueError):
    kind = "validation"

    def __init__(self, message: str, fields: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.fields = list(fields)


class NotFound(LedgerError, LookupError):
    # Foreign rows and missing rows raise the same message.
    kind = "not_found"


class ConsistencyError(LedgerError):
    kind = "consistency"


class InfrastructureError(LedgerError):
    kind = "infrastructure"
    retryable = True


def invalid_input_from(exc: ValidationError) -> InvalidInput:
    fields: list[str] = []
    parts: list[str] = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        if field not in fields:
            fields.append(field)
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return InvalidInput("; ".join(parts) or "Invalid input", fields)
