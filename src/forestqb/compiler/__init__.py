"""
Declarative request -> SPARQL compiler.
"""

from forestqb.compiler.aggregates import AggregateGenerator
from forestqb.compiler.assembler import QueryCompiler, compile_query
from forestqb.compiler.datatypes import resolve_datatype
from forestqb.compiler.filters import FilterKind, FilterTranslator, RangeBound, merge_ranges
from forestqb.compiler.temporal import TemporalInjector

__all__ = [
    "AggregateGenerator",
    "QueryCompiler",
    "compile_query",
    "resolve_datatype",
    "FilterKind",
    "FilterTranslator",
    "RangeBound",
    "merge_ranges",
    "TemporalInjector",
]
