#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
dbconvert Package Initialization
Schema and data conversion between SQL Server and SQLite
"""

from dbconvert.errors import (
    CancellationError, ConversionBusyError, ConverterError, ErrorCode,
    TransportError, UnsupportedTypeError, ValidationError,
)
from dbconvert.schema_model import (
    ColumnSchema, DatabaseSchema, ForeignKeySchema, IndexColumn, IndexSchema,
    TableSchema, ViewSchema,
)
from dbconvert.type_mapper import CanonicalType, TypeMapper
from dbconvert.ddl_builder import DDLBuilder
from dbconvert.row_copier import RowCopier
from dbconvert.orchestrator import (
    CancellationToken, ConversionGate, ConversionOptions, ConversionRun, ConversionState,
    cancel_active_conversion, convert_sqlite_to_sqlserver, convert_sqlserver_to_sqlite,
    is_conversion_active, start_conversion,
)

__version__ = "1.0.0"
