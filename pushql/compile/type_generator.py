"""``CREATE TYPE`` statements for record types.

A record type used as a nested column can be registered on the server as a
custom type::

    TypeGenerator().create_type(Address)
    # CREATE TYPE ADDRESS AS STRUCT<STREET VARCHAR, NUMBER INT>;
"""
from __future__ import annotations

from typing import Any

from pushql.compile.options import CompileOptions, IdentifierFormatter
from pushql.compile.type_translator import TypeTranslator
from pushql.errors import UnsupportedTypeError
from pushql.schema.records import is_record_type
from pushql.schema.statement import CompiledStatement


class TypeGenerator:
    """Builds ``CREATE TYPE`` / ``DROP TYPE`` statements."""

    def __init__(
        self,
        options: CompileOptions | None = None,
        translator: TypeTranslator | None = None,
    ) -> None:
        options = options or CompileOptions()
        self._ident = IdentifierFormatter(options)
        self._translator = translator or TypeTranslator(options)

    def create_type(
        self,
        record_type: Any,
        name: str | None = None,
        if_not_exists: bool = False,
    ) -> CompiledStatement:
        """Return ``CREATE TYPE <name> AS STRUCT<...>;`` for ``record_type``.

        Raises:
            UnsupportedTypeError: If ``record_type`` is not a record type or
                one of its fields has no column type.
        """
        if not is_record_type(record_type):
            raise UnsupportedTypeError(record_type, "Only record types can be registered.")
        type_name = self._ident.format(name or record_type.__name__)
        struct = self._translator.translate(record_type)
        guard = "IF NOT EXISTS " if if_not_exists else ""
        return CompiledStatement(text=f"CREATE TYPE {guard}{type_name} AS {struct};")

    def drop_type(self, name: str, if_exists: bool = False) -> CompiledStatement:
        guard = "IF EXISTS " if if_exists else ""
        return CompiledStatement(text=f"DROP TYPE {guard}{self._ident.format(name)};")
