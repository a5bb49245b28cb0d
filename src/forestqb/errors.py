"""
Error taxonomy for the query compiler.

Every failure raised while compiling a request derives from
CompilationError, so callers (the HTTP layer in particular) can map
the whole family to a single error response.
"""

from typing import Any, Iterable


class CompilationError(Exception):
    """Base class for all compilation errors."""
    pass


class InputDecodeError(CompilationError):
    """The request body is not UTF-8 or not valid JSON."""
    pass


class MissingFieldError(CompilationError, KeyError):
    """A required field is absent from the request."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        self.message = message or f"Missing required field: {path}"
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ExpressionValidationError(CompilationError, ValueError):
    """A SPARQL fragment matches none of the grammars allowed at its usage site."""

    def __init__(self, expression: str, allowed: Iterable[str]):
        self.expression = expression
        self.allowed = list(allowed)
        super().__init__(
            f"expression has to be a {' or a '.join(self.allowed)}, got {expression}"
        )


class InvalidFieldError(CompilationError, ValueError):
    """A request field is present but holds a value of the wrong shape."""

    def __init__(self, path: str, value: Any, expected: str):
        self.path = path
        self.value = value
        super().__init__(f"Invalid value for {path}: expected {expected}, got {value!r}")
