#!/usr/bin/env python3
"""
dbconvert Foreign Key Trigger Builder

Generates SQLite triggers that enforce foreign keys on connections that run
with PRAGMA foreign_keys off (the SQLite default):

- fki_<name>: BEFORE INSERT on the child table
- fku_<name>: BEFORE UPDATE on the child table
- fkd_<name>: BEFORE DELETE on the parent table (cascading when the key does)
"""

import logging
from dataclasses import dataclass
from typing import List

from dbconvert.schema_model import ForeignKeySchema, TableSchema

logger = logging.getLogger(__name__)


@dataclass
class TriggerSchema:
    name: str
    event: str  # INSERT, UPDATE or DELETE
    table: str
    body: str


def _q(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


class TriggerBuilder:
    """Builds foreign key enforcement triggers for SQLite."""

    def constraint_name(self, fk: ForeignKeySchema) -> str:
        return f"{fk.table_name}_{fk.column_name}_{fk.foreign_table_name}_{fk.foreign_column_name}"

    def triggers_for_foreign_key(self, fk: ForeignKeySchema) -> List[TriggerSchema]:
        name = self.constraint_name(fk)
        child, parent = _q(fk.table_name), _q(fk.foreign_table_name)
        col, parent_col = _q(fk.column_name), _q(fk.foreign_column_name)
        missing_parent = (f"NEW.{col} IS NOT NULL AND "
                          f"(SELECT {parent_col} FROM {parent} WHERE {parent_col} = NEW.{col}) IS NULL")

        triggers = [
            TriggerSchema(
                name=f"fki_{name}", event='INSERT', table=fk.table_name,
                body=(f"WHEN {missing_parent}\nBEGIN\n    SELECT RAISE(ABORT, "
                      f"{_literal(f'insert on table {fk.table_name} violates foreign key constraint fki_{name}')});\nEND"),
            ),
            TriggerSchema(
                name=f"fku_{name}", event='UPDATE', table=fk.table_name,
                body=(f"WHEN {missing_parent}\nBEGIN\n    SELECT RAISE(ABORT, "
                      f"{_literal(f'update on table {fk.table_name} violates foreign key constraint fku_{name}')});\nEND"),
            ),
        ]

        if fk.cascade_on_delete:
            delete_body = f"BEGIN\n    DELETE FROM {child} WHERE {col} = OLD.{parent_col};\nEND"
        else:
            delete_body = (f"WHEN (SELECT {col} FROM {child} WHERE {col} = OLD.{parent_col}) IS NOT NULL\n"
                           f"BEGIN\n    SELECT RAISE(ABORT, "
                           f"{_literal(f'delete on table {fk.foreign_table_name} violates foreign key constraint fkd_{name}')});\nEND")
        triggers.append(TriggerSchema(name=f"fkd_{name}", event='DELETE',
                                      table=fk.foreign_table_name, body=delete_body))
        return triggers

    def build_create_trigger(self, trigger: TriggerSchema) -> str:
        return (f"CREATE TRIGGER {_q(trigger.name)} BEFORE {trigger.event} ON {_q(trigger.table)} "
                f"FOR EACH ROW {trigger.body}")

    def build_table_triggers(self, table: TableSchema) -> List[str]:
        """CREATE TRIGGER statements for every foreign key of the table."""
        statements = []
        for fk in table.foreign_keys:
            for trigger in self.triggers_for_foreign_key(fk):
                statements.append(self.build_create_trigger(trigger))
        logger.debug(f"Built {len(statements)} foreign key triggers for [{table.table_name}]")
        return statements
