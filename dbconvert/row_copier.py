#!/usr/bin/env python3
"""
dbconvert Row Copier
====================

Streams rows from a source table into the destination table in batches.

Every batch of at most ``batch_size`` rows runs in its own transaction and is
committed before the next one opens. A failing batch is rolled back and the
error re-raised; batches committed earlier stay in the destination, so the
recovery granularity is one batch, not one table.
"""

import logging
from typing import Callable, List, Optional

from dbconvert.errors import ConverterError, TransportError
from dbconvert.schema_model import TableSchema
from dbconvert.type_mapper import TypeMapper, normalize_param_name

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

# on_batch(table_name, rows_copied_so_far, batch_number)
BatchCallback = Callable[[str, int, int], None]


class RowCopier:
    """Batched, cancellable row transfer between two adapters."""

    def __init__(self, source, destination, cancel_token=None, batch_size: int = DEFAULT_BATCH_SIZE):
        """
        Args:
            source: Adapter rows are read from
            destination: Adapter rows are inserted into
            cancel_token: Checked at table start and after every commit
            batch_size: Rows per committed transaction
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.source = source
        self.destination = destination
        self.cancel_token = cancel_token
        self.batch_size = batch_size

    def _check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

    def build_insert(self, table: TableSchema):
        """Return the INSERT statement and parameter names, one per column in order."""
        param_names: List[str] = []
        for col in table.columns:
            param_names.append(normalize_param_name(col.column_name, param_names))
        return self.destination.build_insert(table, param_names), param_names

    def _convert_row(self, row, table: TableSchema, param_names: List[str]) -> dict:
        to_driver = self.destination.to_driver
        return {
            name: to_driver(TypeMapper.coerce_value(value, col))
            for name, value, col in zip(param_names, row, table.columns)
        }

    def copy_table(self, table: TableSchema, on_batch: Optional[BatchCallback] = None) -> int:
        """
        Copy every row of one table.

        Returns:
            Number of rows committed to the destination

        Raises:
            CancellationError: when cancellation is observed at a batch boundary
            TransportError: when a read, insert or commit fails
            UnsupportedTypeError: when a value cannot be coerced
        """
        self._check_cancelled()
        select_sql = self.source.build_select(table)
        insert_sql, param_names = self.build_insert(table)
        identity_insert = any(TypeMapper.is_auto_increment_key(col, table) for col in table.columns)
        logger.info(f"Copying rows of table [{table.table_name}]")
        logger.debug(f"{select_sql} -> {insert_sql}")

        copied = 0
        batch_number = 0
        if identity_insert:
            self.destination.set_identity_insert(table, True)
        try:
            for rows in self.source.iter_rows(select_sql, self.batch_size):
                batch_number += 1
                params = [self._convert_row(row, table, param_names) for row in rows]
                self.destination.begin()
                try:
                    self.destination.executemany(insert_sql, params)
                    self.destination.commit()
                except Exception as e:
                    logger.error(f"Batch {batch_number} of table [{table.table_name}] failed, rolling back: {e}")
                    self.destination.rollback()
                    if isinstance(e, ConverterError):
                        raise
                    raise TransportError(
                        f"Failed to insert batch {batch_number} into {table.table_name}: {e}",
                        {'table': table.table_name, 'batch': batch_number}) from e

                copied += len(rows)
                logger.debug(f"Committed batch {batch_number} of [{table.table_name}] ({copied} rows)")
                if on_batch:
                    on_batch(table.table_name, copied, batch_number)
                self._check_cancelled()
        finally:
            if identity_insert:
                self.destination.set_identity_insert(table, False)

        logger.info(f"Finished copying table [{table.table_name}] ({copied} rows)")
        return copied

    def copy_tables(self, tables: List[TableSchema],
                    on_progress: Optional[Callable[[float, str], None]] = None) -> int:
        """Copy tables in schema order, reporting the overall fraction done."""
        total = 0
        count = len(tables)
        for i, table in enumerate(tables):
            def on_batch(table_name, rows, batch, _i=i):
                if on_progress:
                    on_progress(_i / count, f"Copied {rows} rows of table {table_name}")
            total += self.copy_table(table, on_batch)
            if on_progress:
                on_progress((i + 1) / count, f"Finished table {table.table_name}")
        return total

