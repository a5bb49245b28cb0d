"""
ForestQB: compiles declarative JSON query descriptions into SPARQL.

Graph patterns, filters and modifiers go in; a validated SPARQL SELECT
query comes out.
"""

__version__ = "0.1.0"

from forestqb.compiler import QueryCompiler, compile_query
from forestqb.config import CompilerConfig, load_config
from forestqb.errors import (
    CompilationError,
    ExpressionValidationError,
    InputDecodeError,
    InvalidFieldError,
    MissingFieldError,
)
from forestqb.models import QueryRequest
from forestqb.sparql import SelectQuery

__all__ = [
    "QueryCompiler",
    "compile_query",
    "CompilerConfig",
    "load_config",
    # Errors
    "CompilationError",
    "ExpressionValidationError",
    "InputDecodeError",
    "InvalidFieldError",
    "MissingFieldError",
    # Models
    "QueryRequest",
    "SelectQuery",
]
