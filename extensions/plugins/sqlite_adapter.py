#!/usr/bin/env python3
"""
dbconvert SQLite Adapter

Catalog introspection, DDL execution and row streaming for SQLite files.

- Schema: sqlite_master, PRAGMA table_info / index_list / index_xinfo /
  foreign_key_list
- Destination: explicit BEGIN/COMMIT per batch, named :param inserts
- New files are created with a 4096 byte page size and UTF-16 encoding
"""

import logging
import re
import sqlite3
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from dbconvert.errors import TransportError
from dbconvert.schema_model import (
    ColumnSchema, ForeignKeySchema, IndexColumn, IndexSchema, TableSchema, ViewSchema
)
from dbconvert.schema_reader import SchemaReader
from dbconvert.type_mapper import SQLITE, TypeMapper

logger = logging.getLogger(__name__)

_UNBOUNDED_TYPES = ('nchar', 'nvarchar', 'varchar', 'varbinary')
_STRING_LITERAL_RX = re.compile(r"'(?:[^']|'')*'")


class SQLiteAdapter(SchemaReader):
    """SQLite source/destination adapter."""

    dialect = SQLITE

    def __init__(
        self,
        database: str = ':memory:',
        password: Optional[str] = None,
        timeout: float = 30.0,
        page_size: int = 4096,
        encoding: str = 'UTF-16',
        connection: Optional[sqlite3.Connection] = None,
    ):
        """
        Initialize SQLite adapter.

        Args:
            database: Path to SQLite database file or ':memory:' for in-memory
            password: Optional passphrase, applied with PRAGMA key
            timeout: Connection timeout in seconds
            page_size: Page size used when the file is new
            encoding: Text encoding used when the file is new
            connection: Already-open connection to use instead of connecting
        """
        self.database = database
        self.timeout = timeout
        self.page_size = page_size
        self.encoding = encoding
        if connection is not None:
            self._connection = connection
        else:
            self._connection = None
            self._connect(password)
        logger.info(f"SQLite adapter initialized for {database}")

    def _connect(self, password: Optional[str]) -> None:
        """Open the file in autocommit mode; transactions are explicit."""
        is_new = (self.database == ':memory:' or not Path(self.database).exists()
                  or Path(self.database).stat().st_size == 0)
        try:
            self._connection = sqlite3.connect(
                self.database,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            if password:
                # must be the first statement on the connection
                logger.warning("SQLite passphrase is only honoured by SQLCipher-enabled builds")
                self._connection.execute(f"PRAGMA key = '{password.replace(chr(39), chr(39) * 2)}'")
            if is_new:
                self._connection.execute(f"PRAGMA page_size = {int(self.page_size)}")
                self._connection.execute(f"PRAGMA encoding = '{self.encoding}'")
            logger.debug(f"Connected to SQLite database: {self.database}")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to SQLite: {e}")
            raise TransportError(f"Failed to open SQLite database {self.database}: {e}",
                                 {'database': self.database}) from e

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.info("SQLite adapter closed")

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            cursor = self._connection.cursor()
            cursor.row_factory = sqlite3.Row
            cursor.execute(sql, params)
            return cursor.fetchall()
        except sqlite3.Error as e:
            raise TransportError(f"SQLite query failed: {e}", {'sql': sql}) from e

    # Schema

    def list_tables(self) -> List[Tuple[Optional[str], str]]:
        rows = self._query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'"
        )
        return [(None, row['name']) for row in rows]

    def _table_sql(self, table_name: str) -> str:
        rows = self._query("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,))
        return (rows[0]['sql'] or '') if rows else ''

    def read_columns(self, table: TableSchema) -> Tuple[List[ColumnSchema], List[str]]:
        rows = self._query(f"PRAGMA table_info({self.quote(table.table_name)})")
        table_sql = self._table_sql(table.table_name)

        columns = []
        pk_positions: Dict[int, str] = {}
        declared_types: Dict[str, str] = {}
        for row in rows:
            name = row['name']
            if name is None:
                continue
            declared = (row['type'] or '').strip()
            declared_types[name] = declared
            if not declared:
                logger.warning(f"Column [{table.table_name}].[{name}] has no declared type; "
                               f"treating it as nvarchar")
                type_name, length = 'nvarchar', -1
            else:
                raw_type, length = TypeMapper.parse_declared_type(declared)
                type_name = TypeMapper.normalize_sqlite_type(raw_type)
                if type_name in _UNBOUNDED_TYPES and length == 0:
                    length = -1

            columns.append(ColumnSchema(
                column_name=name,
                column_type=type_name,
                length=length,
                is_nullable=row['notnull'] == 0,
                is_identity=False,
                default_value=row['dflt_value'] or '',
                is_case_sensitive=False if _has_nocase(table_sql, name) else None,
            ))
            if row['pk']:
                pk_positions[int(row['pk'])] = name

        primary_key = [pk_positions[pos] for pos in sorted(pk_positions)]

        # only an INTEGER PRIMARY KEY aliases the rowid and auto-increments
        if len(primary_key) == 1 and declared_types.get(primary_key[0], '').lower() == 'integer':
            for col in columns:
                if col.column_name == primary_key[0]:
                    col.is_identity = True
        return columns, primary_key

    def read_indexes(self, table: TableSchema) -> List[IndexSchema]:
        indexes = []
        for row in self._query(f"PRAGMA index_list({self.quote(table.table_name)})"):
            index_name = row['name']
            origin = row['origin'] if 'origin' in row.keys() else 'c'
            index = IndexSchema(
                index_name=index_name,
                is_unique=row['unique'] == 1,
                is_primary=origin == 'pk',
            )
            for col in self._query(f"PRAGMA index_xinfo({self.quote(index_name)})"):
                if not col['key']:
                    continue
                index.columns.append(IndexColumn(column_name=col['name'], is_ascending=not col['desc']))
            if any(c.column_name is None for c in index.columns):
                logger.warning(f"Skipping expression index [{index_name}] on [{table.table_name}]")
                continue
            indexes.append(index)
        return indexes

    def _primary_key_of(self, table_name: str) -> List[str]:
        rows = self._query(f"PRAGMA table_info({self.quote(table_name)})")
        keyed = sorted((row['pk'], row['name']) for row in rows if row['pk'])
        return [name for _, name in keyed]

    def read_foreign_keys(self, table: TableSchema) -> List[ForeignKeySchema]:
        foreign_keys = []
        for row in self._query(f"PRAGMA foreign_key_list({self.quote(table.table_name)})"):
            foreign_column = row['to']
            if foreign_column is None:
                # REFERENCES parent without a column list targets the parent's primary key
                parent_pk = self._primary_key_of(row['table'])
                seq = row['seq']
                foreign_column = parent_pk[seq] if seq < len(parent_pk) else (parent_pk[0] if parent_pk else 'rowid')
            foreign_keys.append(ForeignKeySchema(
                table_name=table.table_name,
                column_name=row['from'],
                foreign_table_name=row['table'],
                foreign_column_name=foreign_column,
                cascade_on_delete=(row['on_delete'] or '').upper() == 'CASCADE',
                cascade_on_update=(row['on_update'] or '').upper() == 'CASCADE',
            ))
        return foreign_keys

    def list_views(self) -> List[ViewSchema]:
        rows = self._query("SELECT name, sql FROM sqlite_master WHERE type = 'view'")
        return [ViewSchema(view_name=row['name'], view_sql=row['sql']) for row in rows]

    # Destination

    def quote(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def qualified_name(self, table: TableSchema) -> str:
        return self.quote(table.table_name)

    def placeholder(self, param_name: str) -> str:
        return f":{param_name}"

    def build_select(self, table: TableSchema) -> str:
        columns = ', '.join(self.quote(c.column_name) for c in table.columns)
        return f"SELECT {columns} FROM {self.qualified_name(table)}"

    def build_insert(self, table: TableSchema, param_names: List[str]) -> str:
        columns = ', '.join(self.quote(c.column_name) for c in table.columns)
        values = ', '.join(self.placeholder(p) for p in param_names)
        return f"INSERT INTO {self.qualified_name(table)} ({columns}) VALUES ({values})"

    def execute(self, sql: str) -> None:
        logger.debug(f"Executing on SQLite: {sql}")
        try:
            self._connection.execute(sql)
        except sqlite3.Error as e:
            raise TransportError(f"SQLite statement failed: {e}", {'sql': sql}) from e

    def begin(self) -> None:
        if not self._connection.in_transaction:
            self.execute("BEGIN")

    def commit(self) -> None:
        try:
            self._connection.commit()
        except sqlite3.Error as e:
            raise TransportError(f"SQLite commit failed: {e}") from e

    def rollback(self) -> None:
        try:
            self._connection.rollback()
        except sqlite3.Error as e:
            raise TransportError(f"SQLite rollback failed: {e}") from e

    def set_identity_insert(self, table: TableSchema, enabled: bool) -> None:
        """SQLite accepts explicit values for INTEGER PRIMARY KEY columns."""

    def executemany(self, sql: str, rows: List[Dict[str, Any]]) -> None:
        try:
            self._connection.executemany(sql, rows)
        except sqlite3.Error as e:
            raise TransportError(f"SQLite insert failed: {e}", {'sql': sql}) from e

    def iter_rows(self, sql: str, batch_size: int) -> Iterator[List[tuple]]:
        """Yield the query result in lists of at most batch_size rows."""
        try:
            cursor = self._connection.cursor()
            cursor.execute(sql)
        except sqlite3.Error as e:
            raise TransportError(f"SQLite query failed: {e}", {'sql': sql}) from e
        try:
            while True:
                try:
                    rows = cursor.fetchmany(batch_size)
                except sqlite3.Error as e:
                    raise TransportError(f"SQLite fetch failed: {e}", {'sql': sql}) from e
                if not rows:
                    break
                yield rows
        finally:
            cursor.close()

    def to_driver(self, value: Any) -> Any:
        """Convert a coerced value to something sqlite3 can bind."""
        if isinstance(value, uuid.UUID):
            return value.bytes_le
        if isinstance(value, datetime):
            return value.isoformat(sep=' ')
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        return value


def _has_nocase(table_sql: str, column_name: str) -> bool:
    """Check the CREATE TABLE text for COLLATE NOCASE on the given column."""
    if not table_sql:
        return False
    # literals such as CHECK operands must not count as column definitions
    table_sql = _STRING_LITERAL_RX.sub("''", table_sql)
    name = re.escape(column_name)
    pattern = (r'(?:^|[(,\s])(?:"' + name + r'"|\[' + name + r'\]|`' + name + r'`|' + name
               + r')\s[^,]*?\bCOLLATE\s+NOCASE\b')
    return re.search(pattern, table_sql, re.IGNORECASE) is not None
