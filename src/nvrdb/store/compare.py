"""Structural comparison of two SQLite schemas.

Two databases are considered structurally identical when they have the same
tables, and each table has the same columns, indexes, foreign keys and
``check`` constraints. The raw ``create`` text in ``sqlite_master`` is not
compared as a whole since ``alter table`` rewrites it differently than a fresh
``create table`` would. ``check`` constraints are only visible in that text,
so their expressions are pulled out of it and compared without whitespace
or case.
"""

import difflib
import sqlite3


def _rows(conn: sqlite3.Connection, sql: str) -> list[tuple]:
    return [tuple(row) for row in conn.execute(sql).fetchall()]


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _skip_quoted(sql: str, i: int) -> int:
    """Return the index just past the quoted token starting at sql[i]."""
    quote = sql[i]
    while True:
        end = sql.find(quote, i + 1)
        if end == -1:
            return len(sql)
        # A doubled quote is an escaped quote.
        if sql.startswith(quote, end + 1):
            i = end + 1
            continue
        return end + 1


def _skip_comment(sql: str, i: int) -> int:
    if sql.startswith("--", i):
        end = sql.find("\n", i)
        return len(sql) if end == -1 else end + 1
    end = sql.find("*/", i + 2)
    return len(sql) if end == -1 else end + 2


def check_constraints(create_sql: str) -> list[str]:
    """Extract normalized ``check`` expressions from a ``create table`` statement.

    String literals, quoted identifiers and comments are skipped while
    scanning. Each expression is lowercased with whitespace removed.

    Args:
        create_sql: Statement text as stored in ``sqlite_master``.

    Returns:
        The expressions, sorted.
    """
    checks = []
    lower = create_sql.lower()
    i = 0
    while i < len(lower):
        c = lower[i]
        if c in "'\"`":
            i = _skip_quoted(lower, i)
        elif c == "[":
            end = lower.find("]", i)
            i = len(lower) if end == -1 else end + 1
        elif lower.startswith("--", i) or lower.startswith("/*", i):
            i = _skip_comment(lower, i)
        elif (
            lower.startswith("check", i)
            and (i == 0 or not (lower[i - 1].isalnum() or lower[i - 1] == "_"))
            and lower[i + 5 :].lstrip().startswith("(")
        ):
            start = lower.index("(", i)
            end = _matching_paren(lower, start)
            checks.append("".join(lower[start + 1 : end].split()))
            i = end + 1
        else:
            i += 1
    return sorted(checks)


def _matching_paren(sql: str, start: int) -> int:
    depth = 0
    i = start
    while i < len(sql):
        c = sql[i]
        if c in "'\"`":
            i = _skip_quoted(sql, i)
            continue
        if sql.startswith("--", i) or sql.startswith("/*", i):
            i = _skip_comment(sql, i)
            continue
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return len(sql)


def describe_schema(conn: sqlite3.Connection) -> list[str]:
    """Render the structure of a database as comparable text lines.

    Args:
        conn: Connection to describe.

    Returns:
        One line per table, column, index, index column, foreign key and
        check constraint.
    """
    lines = []
    tables = _rows(
        conn,
        "select name, sql from sqlite_master "
        "where type = 'table' and name not like 'sqlite_%' order by name",
    )
    for table, create_sql in tables:
        quoted = _quote(table)
        lines.append(f"table {table}")

        # cid, name, type, notnull, dflt_value, pk
        for column in _rows(conn, f"pragma table_info({quoted})"):
            lines.append(f"  column {column[1:]!r}")

        # seq, name, unique, origin, partial; seq depends on creation order.
        indexes = sorted(
            _rows(conn, f"pragma index_list({quoted})"), key=lambda r: r[1]
        )
        for index in indexes:
            lines.append(f"  index {index[1:]!r}")
            # seqno, cid, name
            for index_column in _rows(conn, f"pragma index_info({_quote(index[1])})"):
                lines.append(f"    {index_column!r}")

        # id, seq, table, from, to, on_update, on_delete, match
        for fk in _rows(conn, f"pragma foreign_key_list({quoted})"):
            lines.append(f"  foreign key {fk!r}")

        for check in check_constraints(create_sql or ""):
            lines.append(f"  check {check}")

    return lines


def get_diffs(
    name1: str,
    conn1: sqlite3.Connection,
    name2: str,
    conn2: sqlite3.Connection,
) -> str | None:
    """Compare the structure of two databases.

    Args:
        name1: Label for the first database in the diff.
        conn1: First connection.
        name2: Label for the second database in the diff.
        conn2: Second connection.

    Returns:
        A unified diff, or None if the schemas match.
    """
    lines1 = describe_schema(conn1)
    lines2 = describe_schema(conn2)
    if lines1 == lines2:
        return None
    return "\n".join(
        difflib.unified_diff(lines1, lines2, fromfile=name1, tofile=name2, lineterm="")
    )
