from dataclasses import dataclass, field
from typing import List, Optional

from dbconvert.errors import ValidationError


@dataclass
class ColumnSchema:
    """Column definition.

    length is -1 when the column was unbounded at introspection time and 0
    when a length does not apply.
    """
    column_name: str
    column_type: str
    length: int = 0
    is_nullable: bool = True
    is_identity: bool = False
    default_value: str = ""
    is_case_sensitive: Optional[bool] = None


@dataclass
class IndexColumn:
    column_name: str
    is_ascending: bool = True


@dataclass
class IndexSchema:
    """Index definition; is_primary marks the index backing the primary key"""
    index_name: str
    is_unique: bool = False
    columns: List[IndexColumn] = field(default_factory=list)
    is_primary: bool = False


@dataclass
class ForeignKeySchema:
    table_name: str
    column_name: str
    foreign_table_name: str
    foreign_column_name: str
    cascade_on_delete: bool = False
    cascade_on_update: bool = False


@dataclass
class TableSchema:
    """Table definition"""
    table_name: str
    columns: List[ColumnSchema] = field(default_factory=list)
    primary_key: List[str] = field(default_factory=list)
    indexes: List[IndexSchema] = field(default_factory=list)
    foreign_keys: List[ForeignKeySchema] = field(default_factory=list)
    schema_name: Optional[str] = None  # owning schema on SQL Server, e.g. dbo

    def get_column(self, name: str) -> Optional[ColumnSchema]:
        for col in self.columns:
            if col.column_name == name:
                return col
        return None

    @property
    def column_names(self) -> List[str]:
        return [col.column_name for col in self.columns]

    def has_identity(self) -> bool:
        return any(col.is_identity for col in self.columns)

    def validate(self) -> None:
        """Check name uniqueness and that every referenced column exists."""
        seen = set()
        for col in self.columns:
            if col.column_name in seen:
                raise ValidationError(
                    f"Duplicate column '{col.column_name}' in table '{self.table_name}'",
                    {'table': self.table_name, 'column': col.column_name})
            seen.add(col.column_name)

        def _require(name: str, where: str):
            if name not in seen:
                raise ValidationError(
                    f"{where} references unknown column '{name}' in table '{self.table_name}'",
                    {'table': self.table_name, 'column': name})

        for name in self.primary_key:
            _require(name, "Primary key")
        for index in self.indexes:
            for index_col in index.columns:
                _require(index_col.column_name, f"Index '{index.index_name}'")
        # dangling foreign_table_name is left for the destination to enforce
        for fk in self.foreign_keys:
            _require(fk.column_name, f"Foreign key to '{fk.foreign_table_name}'")


@dataclass
class ViewSchema:
    view_name: str
    view_sql: str


@dataclass
class DatabaseSchema:
    """Full database schema, built fresh for every conversion run"""
    tables: List[TableSchema] = field(default_factory=list)
    views: List[ViewSchema] = field(default_factory=list)

    def get_table(self, name: str) -> Optional[TableSchema]:
        for table in self.tables:
            if table.table_name == name:
                return table
        return None

    def validate(self) -> None:
        names = set()
        for table in self.tables:
            if table.table_name in names:
                raise ValidationError(f"Duplicate table '{table.table_name}'",
                                      {'table': table.table_name})
            names.add(table.table_name)
            table.validate()
