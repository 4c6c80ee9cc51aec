#!/usr/bin/env python3
"""
dbconvert Schema Reader
=======================

Shared catalog walk for every source dialect. Adapters supply the catalog
queries; the reader owns ordering, progress reporting, cancellation checks
and the tolerance rules (a table whose indexes cannot be read keeps an empty
index list instead of aborting the run).
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from dbconvert.errors import ConverterError
from dbconvert.schema_model import (
    ColumnSchema, DatabaseSchema, ForeignKeySchema, IndexSchema, TableSchema, ViewSchema
)

logger = logging.getLogger(__name__)

# progress(fraction_done, message)
SchemaProgress = Callable[[float, str], None]


class SchemaReader(ABC):
    """Base class for catalog introspection."""

    dialect: str = ''

    @abstractmethod
    def list_tables(self) -> List[Tuple[Optional[str], str]]:
        """Return (schema_name, table_name) pairs for user tables in catalog order."""

    @abstractmethod
    def read_columns(self, table: TableSchema) -> Tuple[List[ColumnSchema], List[str]]:
        """Return the table's columns and its ordered primary key column names."""

    @abstractmethod
    def read_indexes(self, table: TableSchema) -> List[IndexSchema]:
        ...

    @abstractmethod
    def read_foreign_keys(self, table: TableSchema) -> List[ForeignKeySchema]:
        ...

    def list_views(self) -> List[ViewSchema]:
        return []

    def read_table(self, schema_name: Optional[str], table_name: str) -> TableSchema:
        table = TableSchema(table_name=table_name, schema_name=schema_name)
        table.columns, table.primary_key = self.read_columns(table)

        try:
            table.indexes = self.read_indexes(table)
        except ConverterError as e:
            logger.warning(f"Failed to read index information for table [{table_name}]: {e}")
            table.indexes = []

        table.foreign_keys = self.read_foreign_keys(table)
        table.validate()
        return table

    def read_schema(self, progress: Optional[SchemaProgress] = None, cancel_token=None,
                    include_views: bool = False) -> DatabaseSchema:
        """Read every user table (and optionally every view) from the source.

        Args:
            progress: called with (fraction, message) after each table
            cancel_token: checked between tables
            include_views: also collect view definitions

        Returns:
            A freshly built DatabaseSchema
        """
        schema = DatabaseSchema()
        names = self.list_tables()
        total = len(names)
        logger.info(f"Reading schema of {total} tables from {self.dialect} source")

        for i, (schema_name, table_name) in enumerate(names, start=1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            table = self.read_table(schema_name, table_name)
            schema.tables.append(table)
            logger.debug(f"Parsed table schema for [{table_name}] "
                         f"({len(table.columns)} columns, {len(table.indexes)} indexes)")
            if progress:
                progress(i / total, f"Parsed table {table_name}")

        if include_views:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            schema.views = self.list_views()
            logger.info(f"Read {len(schema.views)} view definitions")

        schema.validate()
        return schema
