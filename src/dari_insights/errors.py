class EngineError(Exception):
    """Base class for hard failures surfaced to callers of the engine."""


class ValidationError(EngineError):
    """Malformed input to a public operation. Nothing was changed."""


class CurrencyMismatchError(ValidationError):
    def __init__(self, expected: str, actual: str, operation: str = "compare") -> None:
        self.expected = expected
        self.actual = actual
        self.operation = operation
        super().__init__(
            f"Cannot {operation} money in different currencies: {expected} vs {actual}"
        )


class NotFoundError(EngineError):
    def __init__(self, entity: str, identifiers: str | list[str]) -> None:
        if isinstance(identifiers, str):
            identifiers = [identifiers]
        self.entity = entity
        self.identifiers = list(identifiers)
        super().__init__(f"{entity} not found: {', '.join(self.identifiers)}")


class ExternalFailure(EngineError):
    """An upstream data source failed, so the operation could not run on complete data."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"{operation} failed{detail}")
