#!/usr/bin/env python3
"""
dbconvert Conversion Orchestrator
=================================

Runs one conversion on a dedicated background thread:

    IDLE -> READING_SCHEMA -> [SELECTING] -> CREATING_STRUCTURE
         -> ADDING_FOREIGN_KEYS -> COPYING_DATA -> [CREATING_TRIGGERS]
         -> FINISHED | FAILED | CANCELLED

Callers get a ConversionRun handle back immediately. The handle owns the
run's cancellation token and status. A process-wide ConversionGate admits one
active run at a time in either direction.

Callbacks are called on the worker thread. A selection or view-failure
callback may return a concurrent.futures.Future instead of a value; the run
then waits for the posted response while still honouring cancellation.
"""

import logging
import os
import threading
from concurrent import futures
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from dbconvert.ddl_builder import DDLBuilder
from dbconvert.errors import (
    CancellationError, ConversionBusyError, ConverterError, TransportError, ValidationError
)
from dbconvert.row_copier import DEFAULT_BATCH_SIZE, RowCopier
from dbconvert.schema_model import DatabaseSchema, TableSchema, ViewSchema
from dbconvert.trigger_builder import TriggerBuilder
from dbconvert.type_mapper import MSSQL, SQLITE

logger = logging.getLogger(__name__)

MSSQL_TO_SQLITE = 'mssql-to-sqlite'
SQLITE_TO_MSSQL = 'sqlite-to-mssql'
DIRECTIONS = {
    MSSQL_TO_SQLITE: (MSSQL, SQLITE),
    SQLITE_TO_MSSQL: (SQLITE, MSSQL),
}

CANCELLED_MESSAGE = "Conversion cancelled"

# progress(done, success, percent, message)
ProgressCallback = Callable[[bool, bool, int, str], None]
SelectionCallback = Callable[[DatabaseSchema], object]
ViewFailureCallback = Callable[[ViewSchema], object]
AdapterFactory = Callable[[str, str, Optional[str]], object]


class ConversionState(Enum):
    IDLE = "idle"
    READING_SCHEMA = "reading_schema"
    SELECTING = "selecting"
    CREATING_STRUCTURE = "creating_structure"
    RESOLVING_VIEW_FAILURE = "resolving_view_failure"
    ADDING_FOREIGN_KEYS = "adding_foreign_keys"
    COPYING_DATA = "copying_data"
    CREATING_TRIGGERS = "creating_triggers"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (ConversionState.FINISHED, ConversionState.FAILED, ConversionState.CANCELLED)


class CancellationToken:
    """Thread-safe cooperative cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError()


@dataclass
class ConversionOptions:
    """What to convert and how.

    The password applies to whichever side is the SQLite file.
    """
    direction: str
    source: str
    destination: str
    password: Optional[str] = None
    create_triggers: bool = False
    create_views: bool = False
    copy_structure: bool = True
    copy_data: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    overwrite: bool = False

    @property
    def source_dialect(self) -> str:
        return DIRECTIONS[self.direction][0]

    @property
    def target_dialect(self) -> str:
        return DIRECTIONS[self.direction][1]

    def validate(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValidationError(f"Unknown conversion direction '{self.direction}'",
                                  {'direction': self.direction})
        if not self.copy_structure and not self.copy_data:
            raise ValidationError("Nothing to do: both structure and data copy are disabled")
        if self.batch_size <= 0:
            raise ValidationError(f"Batch size must be positive, got {self.batch_size}")
        if self.create_triggers and self.target_dialect != SQLITE:
            logger.warning("Foreign key triggers are only generated for SQLite destinations")


class ConversionGate:
    """Admits at most one active conversion."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Optional['ConversionRun'] = None

    def acquire(self, run: 'ConversionRun') -> None:
        with self._lock:
            if self._active is not None:
                raise ConversionBusyError()
            self._active = run

    def release(self, run: 'ConversionRun') -> None:
        with self._lock:
            if self._active is run:
                self._active = None

    @property
    def active_run(self) -> Optional['ConversionRun']:
        with self._lock:
            return self._active

    @property
    def is_active(self) -> bool:
        return self.active_run is not None


DEFAULT_GATE = ConversionGate()


class ProgressTracker:
    """Maps per-phase fractions onto one monotonic 0..100 percentage."""

    WEIGHTS: Dict[str, int] = {
        'schema': 10,
        'structure': 15,
        'foreign_keys': 5,
        'data': 65,
        'triggers': 5,
    }

    def __init__(self, phases: List[str]):
        total = sum(self.WEIGHTS[p] for p in phases) or 1
        self._start: Dict[str, float] = {}
        self._span: Dict[str, float] = {}
        offset = 0.0
        for phase in phases:
            span = self.WEIGHTS[phase] * 100.0 / total
            self._start[phase] = offset
            self._span[phase] = span
            offset += span
        self.percent = 0

    def update(self, phase: str, fraction: float) -> int:
        fraction = min(max(fraction, 0.0), 1.0)
        value = int(round(self._start.get(phase, 0.0) + self._span.get(phase, 0.0) * fraction, 6))
        self.percent = max(self.percent, min(value, 100))
        return self.percent


def default_adapter_factory(dialect: str, target: str, password: Optional[str] = None):
    """Open an adapter for a SQLite path or SQL Server connection string."""
    from config.converter_config import get_config

    config = get_config()
    if dialect == SQLITE:
        from extensions.plugins.sqlite_adapter import SQLiteAdapter
        return SQLiteAdapter(database=target, password=password,
                             timeout=config.sqlite_timeout,
                             page_size=config.sqlite_page_size,
                             encoding=config.sqlite_encoding)
    from extensions.plugins.mssql_adapter import MSSQLAdapter
    return MSSQLAdapter.from_connection_string(target, login_timeout=config.mssql_login_timeout,
                                               charset=config.mssql_charset)


class ConversionRun:
    """Handle for one conversion running on a background thread."""

    def __init__(
        self,
        options: ConversionOptions,
        progress: ProgressCallback,
        selection: Optional[SelectionCallback] = None,
        view_failure: Optional[ViewFailureCallback] = None,
        gate: Optional[ConversionGate] = None,
        source_factory: Optional[AdapterFactory] = None,
        destination_factory: Optional[AdapterFactory] = None,
    ):
        options.validate()
        self.options = options
        self.token = CancellationToken()
        self.error: Optional[BaseException] = None
        self.rows_copied = 0
        self.message = ''
        self._progress = progress
        self._selection = selection
        self._view_failure = view_failure
        self._gate = gate if gate is not None else DEFAULT_GATE
        self._source_factory = source_factory or default_adapter_factory
        self._destination_factory = destination_factory or default_adapter_factory
        self._state = ConversionState.IDLE
        self._state_lock = threading.Lock()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

        phases = ['schema']
        if options.copy_structure:
            phases.append('structure')
            if options.target_dialect == MSSQL:
                phases.append('foreign_keys')
        if options.copy_data:
            phases.append('data')
        if self._wants_triggers():
            phases.append('triggers')
        self._tracker = ProgressTracker(phases)

    # Handle API

    @property
    def state(self) -> ConversionState:
        with self._state_lock:
            return self._state

    @property
    def is_active(self) -> bool:
        return self._thread is not None and not self._done.is_set()

    @property
    def succeeded(self) -> bool:
        return self.state == ConversionState.FINISHED

    def start(self) -> 'ConversionRun':
        """Start the worker thread; raises ConversionBusyError when the gate is taken."""
        if self._thread is not None:
            raise ConverterError("Conversion run already started")
        self._gate.acquire(self)
        self._thread = threading.Thread(target=self._run, name="dbconvert-run", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Request cooperative cancellation; the run stops at its next checkpoint."""
        logger.info("Cancellation requested")
        self.token.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the final callback has been delivered."""
        return self._done.wait(timeout)

    # Worker

    def _set_state(self, state: ConversionState) -> None:
        with self._state_lock:
            self._state = state
        logger.debug(f"Conversion state -> {state.value}")

    def _wants_triggers(self) -> bool:
        return (self.options.create_triggers and self.options.copy_structure
                and self.options.target_dialect == SQLITE)

    def _report(self, phase: str, fraction: float, message: str) -> None:
        percent = self._tracker.update(phase, fraction)
        self._progress(False, True, percent, message)

    def _await(self, response):
        """Resolve a callback response, waiting on a Future while watching for cancellation."""
        if not isinstance(response, futures.Future):
            return response
        while True:
            try:
                return response.result(timeout=0.1)
            except futures.TimeoutError:
                if self.token.is_cancelled:
                    response.cancel()
                    raise CancellationError()

    def _run(self) -> None:
        success = False
        try:
            self._convert()
            success = True
            self.message = "Finished converting database"
            self._set_state(ConversionState.FINISHED)
            logger.info(f"Conversion finished ({self.rows_copied} rows copied)")
        except CancellationError as e:
            self.error = e
            self.message = CANCELLED_MESSAGE
            self._set_state(ConversionState.CANCELLED)
            logger.info("Conversion cancelled")
        except ConverterError as e:
            self.error = e
            self.message = e.message
            self._set_state(ConversionState.FAILED)
            logger.error(f"Conversion failed: {e.message}", exc_info=True)
        except Exception as e:
            self.error = e
            self.message = f"Conversion failed: {e}"
            self._set_state(ConversionState.FAILED)
            logger.error(f"Conversion failed: {e}", exc_info=True)
        finally:
            self._gate.release(self)
            try:
                percent = 100 if success else self._tracker.percent
                self._progress(True, success, percent, self.message)
            except Exception:
                logger.error("Completion callback raised", exc_info=True)
            finally:
                self._done.set()

    def _convert(self) -> None:
        opts = self.options
        source_password = opts.password if opts.source_dialect == SQLITE else None
        dest_password = opts.password if opts.target_dialect == SQLITE else None

        self._set_state(ConversionState.READING_SCHEMA)
        source = self._source_factory(opts.source_dialect, opts.source, source_password)
        try:
            schema = source.read_schema(
                progress=lambda fraction, message: self._report('schema', fraction, message),
                cancel_token=self.token,
                include_views=opts.create_views and opts.copy_structure,
            )
            schema = self._select_tables(schema)
            self.token.raise_if_cancelled()

            if opts.overwrite and opts.copy_structure and opts.target_dialect == SQLITE:
                _remove_existing_file(opts.destination)
            destination = self._destination_factory(opts.target_dialect, opts.destination, dest_password)
            try:
                builder = DDLBuilder(opts.target_dialect, opts.source_dialect)
                if opts.copy_structure:
                    self._create_structure(schema, builder, destination)
                    if opts.target_dialect == MSSQL:
                        self._add_foreign_keys(schema, builder, destination)
                if opts.copy_data:
                    self._copy_data(schema, source, destination)
                if self._wants_triggers():
                    self._create_triggers(schema, destination)
            finally:
                destination.close()
        finally:
            source.close()

    def _select_tables(self, schema: DatabaseSchema) -> DatabaseSchema:
        if self._selection is None:
            return schema
        self._set_state(ConversionState.SELECTING)
        selected = self._await(self._selection(schema))
        if selected is None:
            logger.info("Table selection abandoned")
            raise CancellationError(CANCELLED_MESSAGE, {'reason': 'selection abandoned'})
        tables: List[TableSchema] = list(selected)
        logger.info(f"{len(tables)} of {len(schema.tables)} tables selected")
        reduced = DatabaseSchema(tables=tables, views=schema.views)
        reduced.validate()
        return reduced

    def _create_structure(self, schema: DatabaseSchema, builder: DDLBuilder, destination) -> None:
        self._set_state(ConversionState.CREATING_STRUCTURE)
        total = len(schema.tables) + len(schema.views)
        done = 0
        for table in schema.tables:
            self.token.raise_if_cancelled()
            ddl = builder.build_create_table(table)
            logger.info(f"\n\n{ddl}\n\n")
            destination.execute(ddl)
            for index_ddl in builder.build_create_indexes(table):
                logger.info(index_ddl)
                destination.execute(index_ddl)
            done += 1
            self._report('structure', done / total, f"Added table {table.table_name} to the destination database")

        for view in schema.views:
            self.token.raise_if_cancelled()
            self._create_view(view, builder, destination)
            done += 1
            self._report('structure', done / total, f"Processed view {view.view_name}")

    def _create_view(self, view: ViewSchema, builder: DDLBuilder, destination) -> None:
        sql = builder.build_create_view(view)
        while True:
            try:
                destination.execute(sql)
                logger.info(f"Created view [{view.view_name}]")
                return
            except TransportError as e:
                if self._view_failure is None:
                    logger.warning(f"Skipping view [{view.view_name}]: {e.message}")
                    return
                logger.warning(f"View [{view.view_name}] failed ({e.message}); asking for a correction")
                self._set_state(ConversionState.RESOLVING_VIEW_FAILURE)
                corrected = self._await(self._view_failure(ViewSchema(view.view_name, sql)))
                self._set_state(ConversionState.CREATING_STRUCTURE)
                if not corrected:
                    logger.warning(f"Skipping view [{view.view_name}] at caller's request")
                    return
                sql = corrected

    def _add_foreign_keys(self, schema: DatabaseSchema, builder: DDLBuilder, destination) -> None:
        self._set_state(ConversionState.ADDING_FOREIGN_KEYS)
        total = len(schema.tables)
        for i, table in enumerate(schema.tables, start=1):
            self.token.raise_if_cancelled()
            ddl = builder.build_add_foreign_key(table)
            if ddl is not None:
                logger.info(f"\n\n{ddl}\n\n")
                destination.execute(ddl)
            self._report('foreign_keys', i / total, f"Added foreign keys of table {table.table_name}")

    def _copy_data(self, schema: DatabaseSchema, source, destination) -> None:
        self._set_state(ConversionState.COPYING_DATA)
        copier = RowCopier(source, destination, cancel_token=self.token, batch_size=self.options.batch_size)
        count = len(schema.tables)
        for i, table in enumerate(schema.tables):
            def on_batch(table_name, rows, batch, _i=i):
                # a table's share is unknown up front; advance within it by batches
                within = 1.0 - 1.0 / (batch + 1)
                self._report('data', (_i + within) / count, f"Copied {rows} rows of table {table_name}")

            self.rows_copied += copier.copy_table(table, on_batch)
            self._report('data', (i + 1) / count, f"Finished copying table {table.table_name}")

    def _create_triggers(self, schema: DatabaseSchema, destination) -> None:
        self._set_state(ConversionState.CREATING_TRIGGERS)
        builder = TriggerBuilder()
        total = len(schema.tables)
        for i, table in enumerate(schema.tables, start=1):
            self.token.raise_if_cancelled()
            for ddl in builder.build_table_triggers(table):
                logger.debug(ddl)
                destination.execute(ddl)
            self._report('triggers', i / total, f"Added foreign key triggers of table {table.table_name}")


def _remove_existing_file(path: str) -> None:
    if path and path != ':memory:' and Path(path).exists():
        logger.info(f"Removing existing destination file {path}")
        os.remove(path)


def start_conversion(
    options: ConversionOptions,
    progress: ProgressCallback,
    selection: Optional[SelectionCallback] = None,
    view_failure: Optional[ViewFailureCallback] = None,
    gate: Optional[ConversionGate] = None,
    source_factory: Optional[AdapterFactory] = None,
    destination_factory: Optional[AdapterFactory] = None,
) -> ConversionRun:
    """
    Start a conversion and return its handle without waiting for it.

    Raises:
        ValidationError: when the options are inconsistent
        ConversionBusyError: when another run holds the gate
    """
    run = ConversionRun(options, progress, selection, view_failure, gate,
                        source_factory, destination_factory)
    return run.start()


def convert_sqlserver_to_sqlite(
    sqlserver_conn_string: str,
    sqlite_path: str,
    password: Optional[str],
    progress: ProgressCallback,
    selection: Optional[SelectionCallback] = None,
    view_failure: Optional[ViewFailureCallback] = None,
    create_triggers: bool = False,
    create_views: bool = False,
    **kwargs,
) -> ConversionRun:
    """Convert a SQL Server database into a new SQLite file."""
    options = ConversionOptions(
        direction=MSSQL_TO_SQLITE,
        source=sqlserver_conn_string,
        destination=sqlite_path,
        password=password,
        create_triggers=create_triggers,
        create_views=create_views,
        copy_structure=kwargs.pop('copy_structure', True),
        copy_data=kwargs.pop('copy_data', True),
        batch_size=kwargs.pop('batch_size', DEFAULT_BATCH_SIZE),
        overwrite=kwargs.pop('overwrite', False),
    )
    return start_conversion(options, progress, selection, view_failure, **kwargs)


def convert_sqlite_to_sqlserver(
    sqlite_path: str,
    sqlserver_conn_string: str,
    password: Optional[str],
    progress: ProgressCallback,
    selection: Optional[SelectionCallback] = None,
    view_failure: Optional[ViewFailureCallback] = None,
    copy_structure: bool = True,
    copy_data: bool = True,
    create_views: bool = False,
    **kwargs,
) -> ConversionRun:
    """Convert a SQLite file into an existing SQL Server database."""
    options = ConversionOptions(
        direction=SQLITE_TO_MSSQL,
        source=sqlite_path,
        destination=sqlserver_conn_string,
        password=password,
        create_views=create_views,
        copy_structure=copy_structure,
        copy_data=copy_data,
        batch_size=kwargs.pop('batch_size', DEFAULT_BATCH_SIZE),
    )
    return start_conversion(options, progress, selection, view_failure, **kwargs)


def is_conversion_active(gate: Optional[ConversionGate] = None) -> bool:
    return (gate or DEFAULT_GATE).is_active


def cancel_active_conversion(gate: Optional[ConversionGate] = None) -> bool:
    """Cancel whatever run holds the gate; returns False when nothing is running."""
    run = (gate or DEFAULT_GATE).active_run
    if run is None:
        return False
    run.cancel()
    return True
