#!/usr/bin/env python3
"""
dbconvert Test Configuration - PyTest Configuration and Fixtures

Shared fixtures: temporary SQLite files, a populated sample database and
schema model builders.
"""

import os
import sqlite3
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dbconvert.schema_model import ColumnSchema, ForeignKeySchema, TableSchema

SAMPLE_SCHEMA = """
CREATE TABLE Customers (
    CustomerId INTEGER PRIMARY KEY AUTOINCREMENT,
    Name NVARCHAR(100) NOT NULL COLLATE NOCASE,
    Email VARCHAR(255),
    IsActive BOOLEAN NOT NULL DEFAULT 1,
    CreatedAt DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE UNIQUE INDEX ix_customers_email ON Customers (Email DESC);
CREATE TABLE Orders (
    OrderId INTEGER PRIMARY KEY,
    CustomerId INTEGER NOT NULL REFERENCES Customers ON DELETE CASCADE,
    Total NUMERIC(10,2) DEFAULT 0,
    Notes TEXT,
    Token BLOB
);
CREATE TABLE OrderLines (
    OrderId INTEGER NOT NULL,
    LineNo SMALLINT NOT NULL,
    Sku VARCHAR(20) DEFAULT 'n/a',
    Qty INT,
    PRIMARY KEY (OrderId, LineNo),
    FOREIGN KEY (OrderId) REFERENCES Orders (OrderId)
);
CREATE INDEX ix_lines_sku ON OrderLines (Sku);
CREATE VIEW ActiveCustomers AS SELECT CustomerId, Name FROM Customers WHERE IsActive = 1;
"""


def create_sqlite(path, script: str) -> None:
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(script)
        conn.commit()
    finally:
        conn.close()


def query(path, sql: str, params=()):
    conn = sqlite3.connect(str(path))
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


@pytest.fixture
def sample_db(tmp_path) -> Path:
    """A small SQLite database with three related tables and a view"""
    path = tmp_path / "sample.db"
    create_sqlite(path, SAMPLE_SCHEMA)
    conn = sqlite3.connect(str(path))
    conn.executemany("INSERT INTO Customers (Name, Email, IsActive) VALUES (?, ?, ?)",
                     [('Ann', 'ann@example.com', 1), ('Bob', 'bob@example.com', 0),
                      ('Cid', 'cid@example.com', 1)])
    conn.executemany("INSERT INTO Orders (OrderId, CustomerId, Total, Notes) VALUES (?, ?, ?, ?)",
                     [(10, 1, 12.5, 'first'), (11, 1, 3.0, None), (12, 3, 99.99, 'big')])
    conn.executemany("INSERT INTO OrderLines (OrderId, LineNo, Sku, Qty) VALUES (?, ?, ?, ?)",
                     [(10, 1, 'A-1', 2), (10, 2, 'B-7', 1), (12, 1, 'Z-9', 5)])
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def dest_path(tmp_path) -> Path:
    return tmp_path / "dest.db"


def person_table() -> TableSchema:
    """Person(Id int identity primary key, Name varchar(50) not null, Age int null)"""
    return TableSchema(
        table_name='Person',
        columns=[
            ColumnSchema('Id', 'int', is_nullable=False, is_identity=True),
            ColumnSchema('Name', 'varchar', length=50, is_nullable=False),
            ColumnSchema('Age', 'int'),
        ],
        primary_key=['Id'],
    )


def fk(table, column, foreign_table, foreign_column, **kwargs) -> ForeignKeySchema:
    return ForeignKeySchema(table, column, foreign_table, foreign_column, **kwargs)
