"""Install GiST exclusion constraints against overlapping holds and bookings

Revision ID: 0002_exclusion_constraints
Revises: 0001_initial_schema
Create Date: 2026-10-01 00:10:00.000000
"""
from alembic import op
import sqlalchemy as sa

from bookinghub.app.domain.models import BOOKINGS_EXCLUSION_DDL, SLOT_HOLDS_EXCLUSION_DDL
from bookinghub.migrations.utils import exclusion_constraint_exists, find_overlaps, table_exists


# revision identifiers, used by Alembic.
revision = "0002_exclusion_constraints"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

OCCUPYING_PREDICATE = "{alias}.status IN ('pending', 'confirmed')"


def upgrade() -> None:
    conn = op.get_bind()

    # Ensure GiST support for the uuid equality part of the constraint
    conn.execute(sa.text("CREATE EXTENSION IF NOT EXISTS btree_gist;"))

    # Refuse to install over existing overlaps; the operator resolves them first
    overlaps = find_overlaps("bookings", OCCUPYING_PREDICATE, conn)
    if overlaps:
        raise RuntimeError(
            f"Found {len(overlaps)} overlapping pending/confirmed bookings (first: {overlaps[0]}). "
            "Cancel or move them before re-running this migration."
        )
    # Holds are disposable: drop overlapping ones instead of aborting
    if table_exists("slot_holds", conn):
        conn.execute(
            sa.text(
                "DELETE FROM slot_holds h USING slot_holds o "
                "WHERE h.staff_id = o.staff_id AND h.id > o.id "
                "AND tstzrange(h.start_time, h.end_time) && tstzrange(o.start_time, o.end_time)"
            )
        )

    if not exclusion_constraint_exists("bookings_no_overlap_excl", conn):
        conn.execute(sa.text(BOOKINGS_EXCLUSION_DDL))
    if not exclusion_constraint_exists("slot_holds_no_overlap_excl", conn):
        conn.execute(sa.text(SLOT_HOLDS_EXCLUSION_DDL))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(sa.text("ALTER TABLE slot_holds DROP CONSTRAINT IF EXISTS slot_holds_no_overlap_excl;"))
    conn.execute(sa.text("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_excl;"))
