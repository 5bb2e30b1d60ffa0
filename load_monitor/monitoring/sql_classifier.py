"""
SQL statement classifier.

Best-effort pattern matching over SQL text pulled from V$SQL: finds the
statement kind and the main table it touches. This is not a SQL grammar and
never raises; anything it cannot make sense of comes back as the
"N/A" / unknown-table sentinels.
"""

import re
import logging
from typing import Optional, Tuple

from .models import NO_OPERATION, UNKNOWN_TABLE

logger = logging.getLogger(__name__)

OPERATIONS = ("SELECT", "INSERT", "UPDATE", "DELETE", "MERGE")

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_OPERATION = re.compile(r"\b(" + "|".join(OPERATIONS) + r")\b")

# schema.table, either part optionally double-quoted
_IDENT = r'("?[A-Z0-9_$]+"?(?:\."?[A-Z0-9_$]+"?)*)'

_TABLE_PATTERNS = {
    "INSERT": re.compile(r"\bINTO\s+" + _IDENT),
    "UPDATE": re.compile(r"\bUPDATE\s+" + _IDENT),
    "DELETE": re.compile(r"\bFROM\s+" + _IDENT),
    "MERGE": re.compile(r"\bMERGE\s+INTO\s+" + _IDENT),
    "SELECT": re.compile(r"\bFROM\s+" + _IDENT),
}
_ANY_TABLE = re.compile(r"\b(?:INTO|UPDATE|FROM)\s+" + _IDENT)


def normalize_sql(sql_text: Optional[str]) -> str:
    """Strip comments and hints, collapse whitespace, uppercase."""
    if not sql_text:
        return ""
    if not isinstance(sql_text, str):
        sql_text = str(sql_text)
    sql = _BLOCK_COMMENT.sub(" ", sql_text)
    sql = _LINE_COMMENT.sub(" ", sql)
    return " ".join(sql.split()).upper()


def classify(sql_text: Optional[str]) -> Tuple[str, str]:
    """
    Classify a statement.

    Args:
        sql_text: Raw SQL text, possibly empty or the "N/A ..." placeholder

    Returns:
        (operation, main_table) where operation is one of OPERATIONS or
        "N/A", and main_table is the table name with quotes removed or
        UNKNOWN_TABLE
    """
    sql = normalize_sql(sql_text)
    if not sql or sql.startswith("N/A"):
        return NO_OPERATION, UNKNOWN_TABLE

    op_match = _OPERATION.search(sql)
    operation = op_match.group(1) if op_match else NO_OPERATION

    pattern = _TABLE_PATTERNS.get(operation, _TABLE_PATTERNS["SELECT"])
    table_match = pattern.search(sql) or _ANY_TABLE.search(sql)
    if not table_match:
        logger.debug(f"No table found in SQL: {sql[:80]}")
        return operation, UNKNOWN_TABLE

    main_table = table_match.group(1).replace('"', "")
    return operation, main_table or UNKNOWN_TABLE
