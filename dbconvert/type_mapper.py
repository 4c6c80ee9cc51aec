#!/usr/bin/env python3
"""
dbconvert Type Mapper
=====================

Translates native column types between SQL Server and SQLite through a small
canonical vocabulary, renders destination column/default fragments and
coerces row values at copy time.

Column types in the schema model use SQL Server flavoured names (the SQLite
reader collapses SQLite declared types onto that vocabulary), so one lookup
serves both directions.
"""

import logging
import math
import re
import struct
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from dbconvert.errors import UnsupportedTypeError, ValidationError
from dbconvert.schema_model import ColumnSchema, TableSchema

logger = logging.getLogger(__name__)

MSSQL = 'mssql'
SQLITE = 'sqlite'
DIALECTS = (MSSQL, SQLITE)


class CanonicalType(Enum):
    TINYINT = "tinyint"
    SMALLINT = "smallint"
    INT = "int"
    BIGINT = "bigint"
    BIT = "bit"
    TEXT = "text"
    FLOAT = "float"
    REAL = "real"
    BINARY = "binary"
    DATETIME = "datetime"
    UNIQUEIDENTIFIER = "uniqueidentifier"
    XML = "xml"
    VARIANT = "variant"


INTEGER_BITS: Dict[CanonicalType, int] = {
    CanonicalType.TINYINT: 8,
    CanonicalType.SMALLINT: 16,
    CanonicalType.INT: 32,
    CanonicalType.BIGINT: 64,
}

# char/binary types that take a (n) length on SQL Server, with their max n
_MSSQL_SIZED_TYPES = {
    'char': 8000, 'varchar': 8000,
    'nchar': 4000, 'nvarchar': 4000,
    'binary': 8000, 'varbinary': 8000,
}
_MSSQL_VARIABLE_WIDTH = {'char': 'varchar', 'nchar': 'nvarchar', 'binary': 'varbinary'}

_CURRENT_TIMESTAMP_FUNCTIONS = (
    'getdate', 'getutcdate', 'sysdatetime', 'current_timestamp',
    "datetime('now'", 'now()',
)
_NUMERIC_RX = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')
_NATIONAL_RX = re.compile(r"^[Nn]('.*')$", re.DOTALL)
_QUOTED_LITERAL_RX = re.compile(r"'(?:[^']|'')*'")
_DECLARED_TYPE_RX = re.compile(r'^\s*([^()]+?)\s*(?:\(\s*([^()]*?)\s*\))?\s*$')

_TRUE_LITERALS = ('1', "'1'", 'true', "'true'")
_FALSE_LITERALS = ('0', "'0'", 'false', "'false'")


class TypeMapper:
    """Static helpers for type canonicalization, DDL fragments and value coercion"""

    # dialect -> native type name -> canonical type
    NATIVE_TO_CANONICAL: Dict[str, Dict[str, CanonicalType]] = {
        MSSQL: {
            'tinyint': CanonicalType.TINYINT,
            'smallint': CanonicalType.SMALLINT,
            'int': CanonicalType.INT,
            'bigint': CanonicalType.BIGINT,
            'bit': CanonicalType.BIT,
            'char': CanonicalType.TEXT,
            'nchar': CanonicalType.TEXT,
            'varchar': CanonicalType.TEXT,
            'nvarchar': CanonicalType.TEXT,
            'text': CanonicalType.TEXT,
            'ntext': CanonicalType.TEXT,
            'sysname': CanonicalType.TEXT,
            'float': CanonicalType.FLOAT,
            'real': CanonicalType.REAL,
            'decimal': CanonicalType.FLOAT,
            'numeric': CanonicalType.FLOAT,
            'money': CanonicalType.FLOAT,
            'smallmoney': CanonicalType.FLOAT,
            'binary': CanonicalType.BINARY,
            'varbinary': CanonicalType.BINARY,
            'image': CanonicalType.BINARY,
            'timestamp': CanonicalType.BINARY,  # rowversion, not a date
            'rowversion': CanonicalType.BINARY,
            'date': CanonicalType.DATETIME,
            'time': CanonicalType.DATETIME,
            'datetime': CanonicalType.DATETIME,
            'datetime2': CanonicalType.DATETIME,
            'smalldatetime': CanonicalType.DATETIME,
            'datetimeoffset': CanonicalType.DATETIME,
            'uniqueidentifier': CanonicalType.UNIQUEIDENTIFIER,
            'xml': CanonicalType.XML,
            'sql_variant': CanonicalType.VARIANT,
        },
        SQLITE: {
            'tinyint': CanonicalType.TINYINT,
            'int2': CanonicalType.SMALLINT,
            'smallint': CanonicalType.SMALLINT,
            'int': CanonicalType.INT,
            'integer': CanonicalType.INT,
            'mediumint': CanonicalType.INT,
            'int4': CanonicalType.INT,
            'int8': CanonicalType.BIGINT,
            'bigint': CanonicalType.BIGINT,
            'bit': CanonicalType.BIT,
            'boolean': CanonicalType.BIT,
            'char': CanonicalType.TEXT,
            'nchar': CanonicalType.TEXT,
            'varchar': CanonicalType.TEXT,
            'nvarchar': CanonicalType.TEXT,
            'text': CanonicalType.TEXT,
            'ntext': CanonicalType.TEXT,
            'tinytext': CanonicalType.TEXT,
            'longtext': CanonicalType.TEXT,
            'clob': CanonicalType.TEXT,
            'nclob': CanonicalType.TEXT,
            'real': CanonicalType.FLOAT,
            'double': CanonicalType.FLOAT,
            'double precision': CanonicalType.FLOAT,
            'float': CanonicalType.FLOAT,
            'numeric': CanonicalType.FLOAT,
            'decimal': CanonicalType.FLOAT,
            'blob': CanonicalType.BINARY,
            'binary': CanonicalType.BINARY,
            'varbinary': CanonicalType.BINARY,
            'date': CanonicalType.DATETIME,
            'time': CanonicalType.DATETIME,
            'datetime': CanonicalType.DATETIME,
            'timestamp': CanonicalType.DATETIME,
            'uniqueidentifier': CanonicalType.UNIQUEIDENTIFIER,
            'guid': CanonicalType.UNIQUEIDENTIFIER,
            'uuid': CanonicalType.UNIQUEIDENTIFIER,
            'uuidtext': CanonicalType.UNIQUEIDENTIFIER,
        },
    }

    # SQLite declared type -> schema model type name
    SQLITE_SYNONYMS: Dict[str, str] = {
        'tinyint': 'tinyint',
        'int2': 'smallint', 'smallint': 'smallint',
        'int': 'int', 'integer': 'int', 'mediumint': 'int', 'int4': 'int',
        'int8': 'bigint', 'bigint': 'bigint',
        'char': 'char',
        'nchar': 'nchar',
        'varchar': 'varchar', 'tinytext': 'varchar', 'text': 'varchar',
        'longtext': 'varchar', 'clob': 'varchar',
        'nvarchar': 'nvarchar', 'ntext': 'nvarchar', 'nclob': 'nvarchar',
        'blob': 'varbinary', 'binary': 'varbinary', 'varbinary': 'varbinary',
        'real': 'float', 'double': 'float', 'double precision': 'float',
        'float': 'float', 'numeric': 'float', 'decimal': 'float',
        'bit': 'bit', 'boolean': 'bit',
        'date': 'date',
        'time': 'time',
        'datetime': 'datetime', 'timestamp': 'datetime', 'datetime2': 'datetime',
        'uniqueidentifier': 'uniqueidentifier', 'guid': 'uniqueidentifier',
        'uuid': 'uniqueidentifier', 'uuidtext': 'uniqueidentifier',
    }

    @staticmethod
    def canonical_type(native_type: str, dialect: Optional[str] = None) -> CanonicalType:
        """Map a native type name to its canonical type.

        With no dialect the SQL Server table is consulted first, then the
        SQLite one, which covers every name the schema readers produce.

        Raises:
            UnsupportedTypeError: if the name has no canonical mapping
        """
        name = (native_type or '').strip().lower()
        dialects = (dialect,) if dialect else DIALECTS
        for d in dialects:
            table = TypeMapper.NATIVE_TO_CANONICAL.get(d)
            if table is None:
                raise ValidationError(f"Unknown dialect '{d}'")
            if name in table:
                return table[name]
        raise UnsupportedTypeError(
            f"Unsupported column type '{native_type}'",
            {'type': native_type, 'dialect': dialect})

    @staticmethod
    def parse_declared_type(declared: str) -> Tuple[str, int]:
        """Parse 'varchar(50)' -> ('varchar', 50).

        A 'max' length gives -1 and a precision pair such as 'decimal(10,2)'
        gives 0. Unbalanced or nested parentheses raise ValidationError.
        """
        text = (declared or '').strip()
        if text.count('(') != text.count(')'):
            raise ValidationError(f"Malformed type declaration '{declared}'", {'type': declared})
        match = _DECLARED_TYPE_RX.match(text)
        if not match:
            raise ValidationError(f"Malformed type declaration '{declared}'", {'type': declared})

        type_name = re.sub(r'\s+', ' ', match.group(1).lower())
        size = match.group(2)
        if size is None or size == '':
            return type_name, 0
        if size.isdigit():
            return type_name, int(size)
        if size.lower() == 'max':
            return type_name, -1
        if re.match(r'^[+-]?\d+\s*,\s*[+-]?\d+$', size):
            return type_name, 0
        raise ValidationError(f"Malformed type declaration '{declared}'", {'type': declared})

    @staticmethod
    def normalize_sqlite_type(type_name: str) -> str:
        """Collapse a SQLite declared type name onto the schema model vocabulary."""
        name = (type_name or '').strip().lower()
        if name.startswith('unsigned '):
            name = name[len('unsigned '):]
        if name in ('big int', 'unsigned big int'):
            name = 'bigint'
        if name.startswith('varying character') or name.startswith('character varying'):
            name = 'varchar'
        elif name.startswith('native character'):
            name = 'nchar'
        elif name == 'character':
            name = 'char'
        normalized = TypeMapper.SQLITE_SYNONYMS.get(name)
        if normalized is None:
            raise UnsupportedTypeError(
                f"Unsupported SQLite column type '{type_name}'",
                {'type': type_name, 'dialect': SQLITE})
        return normalized

    @staticmethod
    def is_integer_type(type_name: str) -> bool:
        try:
            return TypeMapper.canonical_type(type_name) in INTEGER_BITS
        except UnsupportedTypeError:
            return False

    # ------------------------------------------------------------------
    # DDL fragments
    # ------------------------------------------------------------------

    @staticmethod
    def is_auto_increment_key(col: ColumnSchema, table: TableSchema) -> bool:
        """True for an identity column of integer type that is the sole primary key."""
        return (col.is_identity
                and TypeMapper.is_integer_type(col.column_type)
                and len(table.primary_key) == 1
                and table.primary_key[0] == col.column_name)

    @staticmethod
    def render_column_type(col: ColumnSchema, table: TableSchema, target_dialect: str) -> str:
        """Render the type part of a column clause for the destination."""
        type_name = col.column_type.lower()

        if col.is_identity and TypeMapper.is_integer_type(type_name):
            if TypeMapper.is_auto_increment_key(col, table):
                if target_dialect == SQLITE:
                    return 'integer PRIMARY KEY AUTOINCREMENT'
                return f"{_mssql_integer_name(type_name)} IDENTITY(1,1) PRIMARY KEY"
            # identity semantics are lost for composite or non-key identity columns
            logger.warning(f"Identity column [{table.table_name}].[{col.column_name}] "
                           f"is not the sole primary key; rendered as a plain integer")
            return 'integer' if target_dialect == SQLITE else _mssql_integer_name(type_name)

        if target_dialect == SQLITE:
            if type_name in ('int', 'integer'):
                return 'integer'
            if type_name in ('timestamp', 'rowversion'):
                return 'blob'
            if col.length > 0:
                return f"{type_name}({col.length})"
            return type_name

        if target_dialect == MSSQL:
            if type_name == 'integer':
                return 'int'
            if type_name in _MSSQL_SIZED_TYPES:
                limit = _MSSQL_SIZED_TYPES[type_name]
                if col.length <= 0 or col.length > limit:
                    return f"{_MSSQL_VARIABLE_WIDTH.get(type_name, type_name)}(max)"
                return f"{type_name}({col.length})"
            return type_name

        raise ValidationError(f"Unknown dialect '{target_dialect}'")

    @staticmethod
    def render_collation(col: ColumnSchema, target_dialect: str) -> str:
        if col.is_case_sensitive is None or col.is_case_sensitive:
            return ''
        if target_dialect == SQLITE:
            return ' COLLATE NOCASE'
        try:
            is_text = TypeMapper.canonical_type(col.column_type) == CanonicalType.TEXT
        except UnsupportedTypeError:
            is_text = False
        # only character columns accept a collation on SQL Server
        return ' COLLATE SQL_Latin1_General_CP1_CI_AS' if is_text else ''

    @staticmethod
    def strip_parens(value: str) -> str:
        """Remove every layer of parentheses that encloses the whole expression."""
        value = (value or '').strip()
        while value.startswith('(') and value.endswith(')') and _outer_parens_match(value):
            value = value[1:-1].strip()
        return value

    @staticmethod
    def discard_national(value: str) -> str:
        """N'text' -> 'text'"""
        match = _NATIONAL_RX.match(value)
        return match.group(1) if match else value

    @staticmethod
    def render_default(raw: str, target_dialect: str,
                       canonical: Optional[CanonicalType] = None) -> Optional[str]:
        """Translate a raw default expression, or return None to drop it.

        Applying the translation to its own output yields the same string.
        """
        if not raw:
            return None
        value = TypeMapper.discard_national(TypeMapper.strip_parens(raw))
        if not value:
            return None

        lowered = value.lower()
        if canonical == CanonicalType.BIT:
            if lowered in _TRUE_LITERALS or lowered in _FALSE_LITERALS:
                flag = lowered in _TRUE_LITERALS
                if target_dialect == SQLITE:
                    return 'TRUE' if flag else 'FALSE'
                return '1' if flag else '0'

        if any(fn in lowered for fn in _CURRENT_TIMESTAMP_FUNCTIONS):
            return '(CURRENT_TIMESTAMP)' if target_dialect == SQLITE else '(getdate())'

        if _is_single_quoted(value) or _NUMERIC_RX.match(value):
            return value

        logger.debug(f"Dropping default expression {raw!r}")
        return None

    # ------------------------------------------------------------------
    # Value coercion
    # ------------------------------------------------------------------

    @staticmethod
    def coerce_value(value, col: ColumnSchema):
        """Convert a source value to the Python value the destination column expects.

        Raises:
            UnsupportedTypeError: when the value cannot be represented
        """
        if value is None:
            return None

        canonical = TypeMapper.canonical_type(col.column_type)

        if canonical in INTEGER_BITS:
            return _wrap_integer(_as_integer(value, col), canonical)

        if canonical == CanonicalType.REAL:
            return _to_single(_as_float(value, col))

        if canonical == CanonicalType.FLOAT:
            return _as_float(value, col)

        if canonical == CanonicalType.TEXT:
            if isinstance(value, str):
                return value
            if isinstance(value, uuid.UUID):
                return str(value)
            if isinstance(value, (bool, int, float, Decimal)):
                return str(value)
            if isinstance(value, (datetime, date, time)):
                return value.isoformat(sep=' ') if isinstance(value, datetime) else value.isoformat()
            if isinstance(value, (bytes, bytearray, memoryview)):
                return _decode(value, col)
            raise _incompatible(value, col)

        if canonical == CanonicalType.UNIQUEIDENTIFIER:
            if isinstance(value, uuid.UUID):
                return value
            if isinstance(value, str):
                try:
                    return uuid.UUID(value.strip())
                except ValueError:
                    return uuid.UUID(int=0)
            if isinstance(value, (bytes, bytearray, memoryview)):
                return blob_to_uuid(bytes(value))
            raise _incompatible(value, col)

        if canonical == CanonicalType.BINARY:
            if isinstance(value, bytes):
                return value
            if isinstance(value, (bytearray, memoryview)):
                return bytes(value)
            if isinstance(value, uuid.UUID):
                return value.bytes_le
            if isinstance(value, str):
                return value.encode('utf-8')
            raise _incompatible(value, col)

        if canonical == CanonicalType.BIT:
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, Decimal)):
                return value != 0
            if isinstance(value, str) and value.strip().lower() in ('1', '0', 'true', 'false'):
                return value.strip().lower() in ('1', 'true')
            raise _incompatible(value, col)

        if canonical == CanonicalType.DATETIME:
            if isinstance(value, (datetime, date, time, str)):
                return value
            raise _incompatible(value, col)

        if canonical == CanonicalType.XML:
            if isinstance(value, str):
                return value
            if isinstance(value, (bytes, bytearray, memoryview)):
                return _decode(value, col)
            raise _incompatible(value, col)

        if canonical == CanonicalType.VARIANT:
            if isinstance(value, (str, int, float, Decimal, bytes, datetime, date, time, uuid.UUID)):
                return value
            raise _incompatible(value, col)

        raise _incompatible(value, col)


def blob_to_uuid(blob: bytes) -> uuid.UUID:
    """Read 16 bytes (zero padded or truncated) in little-endian field layout."""
    data = blob[:16].ljust(16, b'\x00')
    return uuid.UUID(bytes_le=data)


def normalize_param_name(name: str, taken: Iterable[str]) -> str:
    """Turn a column name into a parameter name not present in taken.

    Characters other than letters, digits and underscore become underscores;
    collisions get underscores appended until unique.
    """
    taken = set(taken)
    result = ''.join(c if c.isalnum() or c == '_' else '_' for c in name)
    while result in taken:
        result += '_'
    return result


def _mssql_integer_name(type_name: str) -> str:
    return 'int' if type_name in ('integer', 'int4', 'mediumint') else type_name


def _outer_parens_match(value: str) -> bool:
    """True when the first '(' closes at the last character."""
    depth = 0
    in_quote = False
    for i, ch in enumerate(value):
        if ch == "'":
            in_quote = not in_quote
        elif in_quote:
            continue
        elif ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth == 0 and i != len(value) - 1:
                return False
    return depth == 0


def _is_single_quoted(value: str) -> bool:
    """True when value is exactly one string literal, with '' as the escape."""
    return _QUOTED_LITERAL_RX.fullmatch(value) is not None


def _incompatible(value, col: ColumnSchema) -> UnsupportedTypeError:
    return UnsupportedTypeError(
        f"Cannot convert {type(value).__name__} value for column "
        f"'{col.column_name}' of type '{col.column_type}'",
        {'column': col.column_name, 'type': col.column_type,
         'value_type': type(value).__name__})


def _decode(value, col: ColumnSchema) -> str:
    try:
        return bytes(value).decode('utf-8')
    except UnicodeDecodeError:
        raise _incompatible(value, col)


def _as_integer(value, col: ColumnSchema) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if isinstance(value, float) and not math.isfinite(value):
            raise _incompatible(value, col)
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise _incompatible(value, col)
    raise _incompatible(value, col)


def _wrap_integer(number: int, canonical: CanonicalType) -> int:
    bits = INTEGER_BITS[canonical]
    if canonical == CanonicalType.TINYINT:
        return number & 0xFF
    span = 1 << bits
    half = 1 << (bits - 1)
    return ((number + half) % span) - half


def _as_float(value, col: ColumnSchema) -> float:
    if isinstance(value, (bool, int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise _incompatible(value, col)
    raise _incompatible(value, col)


def _to_single(number: float) -> float:
    try:
        return struct.unpack('f', struct.pack('f', number))[0]
    except OverflowError:
        return math.copysign(math.inf, number)
