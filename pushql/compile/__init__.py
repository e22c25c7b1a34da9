"""pushQL compilation layer: expression trees and query specs → ksqlDB text."""
from pushql.compile.builder import StatementBuilder
from pushql.compile.expression_builder import ExpressionCompiler
from pushql.compile.functions import FunctionRegistry, to_function_name
from pushql.compile.options import CompileOptions, IdentifierCasing, IdentifierEscaping
from pushql.compile.type_generator import TypeGenerator
from pushql.compile.type_translator import TypeTranslator

__all__ = [
    "StatementBuilder",
    "ExpressionCompiler",
    "FunctionRegistry",
    "to_function_name",
    "CompileOptions",
    "IdentifierCasing",
    "IdentifierEscaping",
    "TypeGenerator",
    "TypeTranslator",
]
