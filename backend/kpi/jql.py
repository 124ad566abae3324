"""Small helpers for building JQL strings."""

import re
from typing import Iterable, Tuple

_ORDER_BY = re.compile(r"\s+ORDER\s+BY\s+", re.IGNORECASE)


def quote(value) -> str:
    """Quote a JQL string literal."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def quote_list(values: Iterable) -> str:
    return ", ".join(quote(v) for v in values)


def strip_order_by(jql: str) -> Tuple[str, str]:
    """Split a saved filter into its condition and its last ORDER BY clause.

    Returns:
        (base, order_by); order_by is "" when the query has none
    """
    matches = list(_ORDER_BY.finditer(jql))
    if not matches:
        return jql.strip(), ""
    last = matches[-1]
    return jql[:last.start()].strip(), jql[last.start():].strip()


def extend_filter(filter_jql: str, clause: str) -> str:
    """AND a clause onto a saved filter, keeping its sort order last.

    Returns "" when the filter has no condition left to extend.
    """
    base, order_by = strip_order_by(filter_jql)
    if not base:
        return ""
    jql = f"({base}) AND {clause}"
    return f"{jql} {order_by}" if order_by else jql


def project_clause(project_key: str) -> str:
    return f"project = {quote(project_key)}"


def keys_clause(keys: Iterable[str]) -> str:
    return f"key in ({quote_list(keys)})"


def children_clause(parent_key: str) -> str:
    """Issues under an epic, through either the legacy Epic Link or parent."""
    return f'("Epic Link" = {quote(parent_key)} OR parent = {quote(parent_key)})'
