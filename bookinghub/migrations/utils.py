from typing import Any

import sqlalchemy as sa
from alembic import op
from sqlalchemy.engine.reflection import Inspector


def _get_bind(conn: sa.engine.Connection | None = None) -> sa.engine.Connection:
    if conn is not None:
        return conn
    return op.get_bind()


def _inspector(conn: sa.engine.Connection | None = None) -> Inspector:
    return sa.inspect(_get_bind(conn))


def table_exists(table_name: str, conn: sa.engine.Connection | None = None) -> bool:
    return table_name in _inspector(conn).get_table_names()


def exclusion_constraint_exists(constraint_name: str, conn: sa.engine.Connection | None = None) -> bool:
    """Exclusion constraints are invisible to the inspector; ask pg_constraint."""
    bind = _get_bind(conn)
    row = bind.execute(
        sa.text("SELECT 1 FROM pg_constraint WHERE conname = :name AND contype = 'x'"),
        {"name": constraint_name},
    ).first()
    return row is not None


def find_overlaps(
    table_name: str, where_sql: str = "TRUE", conn: sa.engine.Connection | None = None
) -> list[Any]:
    """Pairs of rows on the same staff member whose intervals overlap.

    ``where_sql`` is a trusted SQL predicate with an ``{alias}`` placeholder,
    applied to both sides of the self-join.
    """
    bind = _get_bind(conn)
    sql = f"""
        SELECT a.id, b.id, a.staff_id, a.start_time, a.end_time, b.start_time, b.end_time
        FROM {table_name} a
        JOIN {table_name} b ON a.staff_id = b.staff_id AND a.id < b.id
        WHERE {where_sql.format(alias="a")} AND {where_sql.format(alias="b")}
          AND tstzrange(a.start_time, a.end_time) && tstzrange(b.start_time, b.end_time)
        LIMIT 20
    """
    return list(bind.execute(sa.text(sql)).fetchall())
