#!/usr/bin/env python3
"""
dbconvert View Translator - Best-Effort Rewrite

Rewrites view definitions between the SQL Server and SQLite dialects:
- identifier quoting ([x] <-> "x")
- schema prefixes, TOP 100 PERCENT and SCHEMABINDING removal
- a handful of function renames (ISNULL/IFNULL, LEN/LENGTH, GETDATE)

No semantic rewriting is attempted. A view the destination rejects goes
through the caller's view-failure callback.
"""

import logging
import re
from typing import Optional

from dbconvert.schema_model import ViewSchema

logger = logging.getLogger(__name__)


class ViewTranslator:
    """
    Best-effort view translator.

    Unknown constructs are passed through unchanged; the destination decides.
    """

    # construct -> reason, per target dialect
    UNSUPPORTED = {
        'sqlite': [
            (r'\bcross\s+apply\b', "Contains CROSS APPLY (no SQLite equivalent)"),
            (r'\bouter\s+apply\b', "Contains OUTER APPLY (no SQLite equivalent)"),
            (r'\bpivot\b', "Contains PIVOT (no SQLite equivalent)"),
            (r'\bwith\s*\(\s*nolock\s*\)', "Contains table hints"),
            (r'\bfor\s+xml\b', "Contains FOR XML"),
        ],
        'mssql': [
            (r'\blimit\s+\d+', "Contains LIMIT (use TOP on SQL Server)"),
            (r'\bgroup_concat\s*\(', "Contains GROUP_CONCAT"),
            (r'\|\|', "Contains || string concatenation"),
        ],
    }

    def __init__(self, source_dialect: str = "mssql", target_dialect: str = "sqlite"):
        self.source_dialect = source_dialect.lower()
        self.target_dialect = target_dialect.lower()

    def get_unsupported_reason(self, view_sql: str) -> Optional[str]:
        """Return why the view probably will not translate, or None."""
        lowered = view_sql.lower()
        for pattern, reason in self.UNSUPPORTED.get(self.target_dialect, []):
            if re.search(pattern, lowered):
                return reason
        return None

    def translate(self, view: ViewSchema) -> str:
        """
        Translate a CREATE VIEW statement to the target dialect.

        Args:
            view: View with its full CREATE VIEW text

        Returns:
            CREATE VIEW statement for the target dialect
        """
        sql = view.view_sql.strip().rstrip(';').strip()
        if self.source_dialect == self.target_dialect:
            return sql

        reason = self.get_unsupported_reason(sql)
        if reason:
            logger.warning(f"View [{view.view_name}] may not translate: {reason}")

        if self.target_dialect == 'sqlite':
            return self._to_sqlite(sql)
        return self._to_mssql(sql)

    def _to_sqlite(self, sql: str) -> str:
        sql = re.sub(r'\bwith\s+schemabinding\b', '', sql, flags=re.IGNORECASE)
        sql = re.sub(r'\[((?:[^\]]|\]\])*)\]',
                     lambda m: '"' + m.group(1).replace(']]', ']').replace('"', '""') + '"', sql)
        sql = re.sub(r'(?:"dbo"|\bdbo)\.', '', sql, flags=re.IGNORECASE)
        sql = re.sub(r'\btop\s*\(?\s*100\s*\)?\s+percent\b', '', sql, flags=re.IGNORECASE)
        sql = re.sub(r'\bisnull\s*\(', 'IFNULL(', sql, flags=re.IGNORECASE)
        sql = re.sub(r'\blen\s*\(', 'LENGTH(', sql, flags=re.IGNORECASE)
        sql = re.sub(r'\b(?:getdate|sysdatetime|getutcdate)\s*\(\s*\)', 'CURRENT_TIMESTAMP', sql,
                     flags=re.IGNORECASE)
        return re.sub(r'[ \t]{2,}', ' ', sql)

    def _to_mssql(self, sql: str) -> str:
        sql = re.sub(r'\bcreate\s+view\s+if\s+not\s+exists\b', 'CREATE VIEW', sql, flags=re.IGNORECASE)
        sql = re.sub(r'"((?:[^"]|"")*)"',
                     lambda m: '[' + m.group(1).replace('""', '"').replace(']', ']]') + ']', sql)
        sql = re.sub(r'`([^`]*)`', lambda m: '[' + m.group(1).replace(']', ']]') + ']', sql)
        sql = re.sub(r'\bifnull\s*\(', 'ISNULL(', sql, flags=re.IGNORECASE)
        sql = re.sub(r'\blength\s*\(', 'LEN(', sql, flags=re.IGNORECASE)
        return sql
