#!/usr/bin/env python3
"""
dbconvert DDL Builder
=====================

Renders schema model entities as destination DDL text.

Tables are created first and foreign keys strictly afterwards. On SQL Server
the keys are added with ALTER TABLE ... ADD CONSTRAINT once every table
exists. SQLite has no ADD CONSTRAINT and resolves REFERENCES lazily, so its
keys are written inline in CREATE TABLE and forward references never fail.
"""

import logging
from typing import List, Optional

from dbconvert.errors import UnsupportedTypeError, ValidationError
from dbconvert.schema_model import ColumnSchema, IndexSchema, TableSchema, ViewSchema
from dbconvert.type_mapper import DIALECTS, MSSQL, SQLITE, TypeMapper
from dbconvert.view_translator import ViewTranslator

logger = logging.getLogger(__name__)


def quote_identifier(name: str, dialect: str) -> str:
    if dialect == MSSQL:
        return '[' + name.replace(']', ']]') + ']'
    return '"' + name.replace('"', '""') + '"'


class DDLBuilder:
    """Destination DDL renderer for one target dialect."""

    def __init__(self, target_dialect: str, source_dialect: Optional[str] = None):
        if target_dialect not in DIALECTS:
            raise ValidationError(f"Unknown target dialect '{target_dialect}'")
        self.target_dialect = target_dialect
        self.source_dialect = source_dialect or (SQLITE if target_dialect == MSSQL else MSSQL)

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.target_dialect)

    def build_column(self, col: ColumnSchema, table: TableSchema) -> str:
        parts = [self.quote(col.column_name), TypeMapper.render_column_type(col, table, self.target_dialect)]
        # the auto-increment key clause already implies NOT NULL
        if not col.is_nullable and not TypeMapper.is_auto_increment_key(col, table):
            parts.append('NOT NULL')
        clause = ' '.join(parts) + TypeMapper.render_collation(col, self.target_dialect)

        default = TypeMapper.render_default(
            col.default_value, self.target_dialect, _canonical_or_none(col))
        if default is not None:
            clause += f" DEFAULT {default}"
        elif col.default_value:
            logger.debug(f"Default {col.default_value!r} of [{table.table_name}].[{col.column_name}] dropped")
        return clause

    def build_create_table(self, table: TableSchema) -> str:
        """CREATE TABLE with columns in declared order and the primary key."""
        lines = [f"    {self.build_column(col, table)}" for col in table.columns]

        inline_key = any(TypeMapper.is_auto_increment_key(col, table) for col in table.columns)
        if table.primary_key and not inline_key:
            keys = ', '.join(self.quote(name) for name in table.primary_key)
            lines.append(f"    PRIMARY KEY ({keys})")

        if self.target_dialect == SQLITE:
            for fk in table.foreign_keys:
                clause = (f"    FOREIGN KEY ({self.quote(fk.column_name)}) "
                          f"REFERENCES {self.quote(fk.foreign_table_name)} ({self.quote(fk.foreign_column_name)})")
                lines.append(clause + _cascade_clause(fk))

        return f"CREATE TABLE {self.quote(table.table_name)} (\n" + ',\n'.join(lines) + "\n)"

    def build_create_index(self, table_name: str, index: IndexSchema) -> str:
        columns = ', '.join(
            self.quote(c.column_name) + ('' if c.is_ascending else ' DESC') for c in index.columns)
        unique = 'UNIQUE ' if index.is_unique else ''
        name = self.quote(f"{table_name}_{index.index_name}")
        return f"CREATE {unique}INDEX {name} ON {self.quote(table_name)} ({columns})"

    def build_create_indexes(self, table: TableSchema) -> List[str]:
        """Index statements for a table, leaving out the primary key's own index."""
        return [self.build_create_index(table.table_name, index)
                for index in table.indexes if not index.is_primary and index.columns]

    def build_add_foreign_key(self, table: TableSchema) -> Optional[str]:
        """ALTER TABLE batch adding every foreign key of the table, or None."""
        if self.target_dialect == SQLITE or not table.foreign_keys:
            return None
        statements = []
        for fk in table.foreign_keys:
            constraint = f"{table.table_name}_{fk.column_name}_{fk.foreign_table_name}_{fk.foreign_column_name}"
            statements.append(
                f"ALTER TABLE {self.quote(table.table_name)} "
                f"ADD CONSTRAINT {self.quote(constraint)} FOREIGN KEY ({self.quote(fk.column_name)}) "
                f"REFERENCES {self.quote(fk.foreign_table_name)} ({self.quote(fk.foreign_column_name)})"
                + _cascade_clause(fk)
            )
        return '\n'.join(statements)

    def build_create_view(self, view: ViewSchema) -> str:
        return ViewTranslator(self.source_dialect, self.target_dialect).translate(view)


def _cascade_clause(fk) -> str:
    clause = ''
    if fk.cascade_on_delete:
        clause += ' ON DELETE CASCADE'
    if fk.cascade_on_update:
        clause += ' ON UPDATE CASCADE'
    return clause


def _canonical_or_none(col: ColumnSchema):
    try:
        return TypeMapper.canonical_type(col.column_type)
    except UnsupportedTypeError:
        return None
