#!/usr/bin/env python3
"""
Tests for the SQLite adapter: catalog introspection, destination helpers and
row streaming against real database files.
"""

import sqlite3
import unittest.mock as mock
import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest

from dbconvert.errors import TransportError, UnsupportedTypeError
from extensions.plugins.sqlite_adapter import SQLiteAdapter
from conftest import create_sqlite, person_table, query


@pytest.fixture
def adapter(sample_db):
    a = SQLiteAdapter(str(sample_db))
    yield a
    a.close()


class TestSchemaRead:

    def test_tables_in_catalog_order(self, adapter):
        assert [name for _, name in adapter.list_tables()] == ['Customers', 'Orders', 'OrderLines']

    def test_customers_columns(self, adapter):
        table = adapter.read_schema().get_table('Customers')
        cols = {c.column_name: c for c in table.columns}

        assert table.primary_key == ['CustomerId']
        assert cols['CustomerId'].column_type == 'int'
        assert cols['CustomerId'].is_identity
        assert cols['Name'].column_type == 'nvarchar'
        assert cols['Name'].length == 100
        assert not cols['Name'].is_nullable
        assert cols['Name'].is_case_sensitive is False
        assert cols['Email'].is_case_sensitive is None
        assert cols['IsActive'].column_type == 'bit'
        assert cols['IsActive'].default_value == '1'
        assert cols['CreatedAt'].default_value == 'CURRENT_TIMESTAMP'

    def test_unbounded_and_precision_types(self, adapter):
        table = adapter.read_schema().get_table('Orders')
        cols = {c.column_name: c for c in table.columns}
        assert (cols['Total'].column_type, cols['Total'].length) == ('float', 0)
        assert (cols['Notes'].column_type, cols['Notes'].length) == ('varchar', -1)
        assert (cols['Token'].column_type, cols['Token'].length) == ('varbinary', -1)
        assert cols['OrderId'].is_identity

    def test_composite_key_is_not_identity(self, adapter):
        table = adapter.read_schema().get_table('OrderLines')
        assert table.primary_key == ['OrderId', 'LineNo']
        assert not table.has_identity()
        assert table.get_column('LineNo').column_type == 'smallint'
        assert table.get_column('Sku').default_value == "'n/a'"

    def test_indexes(self, adapter):
        schema = adapter.read_schema()
        email = schema.get_table('Customers').indexes
        assert len(email) == 1
        assert email[0].index_name == 'ix_customers_email'
        assert email[0].is_unique
        assert [(c.column_name, c.is_ascending) for c in email[0].columns] == [('Email', False)]

        lines = {i.index_name: i for i in schema.get_table('OrderLines').indexes}
        primary = [i for i in lines.values() if i.is_primary]
        assert len(primary) == 1
        assert [c.column_name for c in primary[0].columns] == ['OrderId', 'LineNo']
        assert not lines['ix_lines_sku'].is_primary

    def test_foreign_keys(self, adapter):
        schema = adapter.read_schema()
        orders_fk = schema.get_table('Orders').foreign_keys
        assert len(orders_fk) == 1
        assert orders_fk[0].foreign_table_name == 'Customers'
        # no column list in REFERENCES resolves to the parent's primary key
        assert orders_fk[0].foreign_column_name == 'CustomerId'
        assert orders_fk[0].cascade_on_delete
        assert not orders_fk[0].cascade_on_update

        lines_fk = schema.get_table('OrderLines').foreign_keys[0]
        assert (lines_fk.column_name, lines_fk.foreign_table_name, lines_fk.foreign_column_name) == \
            ('OrderId', 'Orders', 'OrderId')

    def test_views_only_when_requested(self, adapter):
        assert adapter.read_schema().views == []
        views = adapter.read_schema(include_views=True).views
        assert [v.view_name for v in views] == ['ActiveCustomers']
        assert views[0].view_sql.startswith('CREATE VIEW ActiveCustomers')

    def test_progress_reported_per_table(self, adapter):
        calls = []
        adapter.read_schema(progress=lambda fraction, msg: calls.append((fraction, msg)))
        assert [round(f, 2) for f, _ in calls] == [0.33, 0.67, 1.0]
        assert calls[-1][1] == 'Parsed table OrderLines'

    def test_index_failure_leaves_empty_list(self, adapter):
        with mock.patch.object(adapter, 'read_indexes', side_effect=TransportError("boom")):
            schema = adapter.read_schema()
        assert all(t.indexes == [] for t in schema.tables)
        assert len(schema.tables) == 3

    def test_untyped_column_becomes_nvarchar(self, tmp_path):
        path = tmp_path / "loose.db"
        create_sqlite(path, "CREATE TABLE Loose (a, b INTEGER);")
        a = SQLiteAdapter(str(path))
        try:
            col = a.read_schema().get_table('Loose').get_column('a')
        finally:
            a.close()
        assert (col.column_type, col.length) == ('nvarchar', -1)

    def test_unknown_declared_type_fails(self, tmp_path):
        path = tmp_path / "odd.db"
        create_sqlite(path, "CREATE TABLE Odd (a JSONB);")
        a = SQLiteAdapter(str(path))
        try:
            with pytest.raises(UnsupportedTypeError):
                a.read_schema()
        finally:
            a.close()

    def test_nocase_inside_literal_ignored(self, tmp_path):
        path = tmp_path / "collate.db"
        create_sqlite(path, "CREATE TABLE T (a TEXT, b TEXT, "
                            "c TEXT CHECK (c <> 'b TEXT COLLATE NOCASE'), "
                            "d TEXT COLLATE NOCASE);")
        a = SQLiteAdapter(str(path))
        try:
            table = a.read_schema().get_table('T')
        finally:
            a.close()
        flags = {col.column_name: col.is_case_sensitive for col in table.columns}
        assert flags == {'a': None, 'b': None, 'c': None, 'd': False}

    def test_expression_index_skipped(self, tmp_path):
        path = tmp_path / "expr.db"
        create_sqlite(path, "CREATE TABLE T (a TEXT); CREATE INDEX ix_lower ON T (lower(a));")
        a = SQLiteAdapter(str(path))
        try:
            assert a.read_schema().get_table('T').indexes == []
        finally:
            a.close()


class TestConnection:

    def test_new_file_settings(self, dest_path):
        a = SQLiteAdapter(str(dest_path))
        a.execute('CREATE TABLE t (x INTEGER)')
        a.close()
        assert query(dest_path, 'PRAGMA page_size')[0][0] == 4096
        assert query(dest_path, 'PRAGMA encoding')[0][0].startswith('UTF-16')

    def test_existing_file_keeps_encoding(self, sample_db):
        a = SQLiteAdapter(str(sample_db))
        a.close()
        assert query(sample_db, 'PRAGMA encoding')[0][0] == 'UTF-8'

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(TransportError):
            SQLiteAdapter(str(tmp_path / "missing" / "dir" / "x.db"))

    def test_bad_statement_is_transport_error(self, dest_path):
        a = SQLiteAdapter(str(dest_path))
        try:
            with pytest.raises(TransportError):
                a.execute('CREATE TABLE (')
        finally:
            a.close()


class TestDestinationHelpers:

    def test_select_and_insert_text(self, dest_path):
        a = SQLiteAdapter(str(dest_path))
        try:
            table = person_table()
            assert a.build_select(table) == 'SELECT "Id", "Name", "Age" FROM "Person"'
            assert a.build_insert(table, ['Id', 'Name', 'Age']) == \
                'INSERT INTO "Person" ("Id", "Name", "Age") VALUES (:Id, :Name, :Age)'
        finally:
            a.close()

    def test_batch_rollback(self, dest_path):
        a = SQLiteAdapter(str(dest_path))
        try:
            a.execute('CREATE TABLE t (x INTEGER NOT NULL)')
            a.begin()
            a.executemany('INSERT INTO t (x) VALUES (:x)', [{'x': 1}, {'x': 2}])
            a.commit()
            a.begin()
            a.executemany('INSERT INTO t (x) VALUES (:x)', [{'x': 3}])
            with pytest.raises(TransportError):
                a.executemany('INSERT INTO t (x) VALUES (:x)', [{'x': None}])
            a.rollback()
        finally:
            a.close()
        assert query(dest_path, 'SELECT x FROM t ORDER BY x') == [(1,), (2,)]

    def test_iter_rows_batches(self, sample_db):
        a = SQLiteAdapter(str(sample_db))
        try:
            batches = list(a.iter_rows('SELECT OrderId FROM Orders ORDER BY OrderId', 2))
        finally:
            a.close()
        assert batches == [[(10,), (11,)], [(12,)]]

    def test_iter_rows_closes_cursor(self):
        a = SQLiteAdapter(':memory:')
        connection = mock.MagicMock()
        cursor = connection.cursor.return_value
        cursor.fetchmany.side_effect = [[(1,)], [(2,)], []]
        try:
            with mock.patch.object(a, '_connection', connection):
                assert list(a.iter_rows('SELECT x FROM t', 1)) == [[(1,)], [(2,)]]
                cursor.close.assert_called_once()

                cursor.reset_mock()
                cursor.fetchmany.side_effect = [[(1,)], [(2,)]]
                stream = a.iter_rows('SELECT x FROM t', 1)
                next(stream)
                stream.close()
                cursor.close.assert_called_once()
        finally:
            a.close()

    def test_to_driver(self):
        a = SQLiteAdapter(':memory:')
        try:
            u = uuid.uuid4()
            assert a.to_driver(u) == u.bytes_le
            assert a.to_driver(datetime(2024, 5, 6, 7, 8, 9)) == '2024-05-06 07:08:09'
            assert a.to_driver(date(2024, 5, 6)) == '2024-05-06'
            assert a.to_driver(Decimal('1.10')) == '1.10'
            assert a.to_driver(b'x') == b'x'
        finally:
            a.close()

    def test_shared_connection(self):
        conn = sqlite3.connect(':memory:', isolation_level=None)
        a = SQLiteAdapter(connection=conn)
        a.execute('CREATE TABLE t (x)')
        assert a.list_tables() == [(None, 't')]
        a.close()
