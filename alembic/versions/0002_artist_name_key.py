"""add artists.name_key for unicode case-insensitive lookups

Revision ID: 0002_artist_name_key
Revises: 0001_initial_schema
Create Date: 2026-10-19 09:00:00.000000

Hey future me - SQLite's lower() only folds ASCII, so the old lower(name) index
never matched "ÓLAFUR ARNALDS" against "Ólafur Arnalds" and the reconciler created
a duplicate artist. The key is now computed in Python (NFC + whitespace collapse +
casefold, same as setlistsync.domain.value_objects.name_key) and stored.

Existing rows are backfilled here before the column becomes NOT NULL.
"""

import re
import unicodedata

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_artist_name_key"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

_WHITESPACE = re.compile(r"\s+")


def _name_key(value: str) -> str:
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", value)).strip().casefold()


def upgrade() -> None:
    with op.batch_alter_table("artists", schema=None) as batch_op:
        batch_op.add_column(sa.Column("name_key", sa.String(255), nullable=True))

    conn = op.get_bind()
    artists = sa.table(
        "artists",
        sa.column("id", sa.String),
        sa.column("name", sa.String),
        sa.column("name_key", sa.String),
    )
    rows = conn.execute(sa.select(artists.c.id, artists.c.name)).all()
    for artist_id, name in rows:
        conn.execute(
            artists.update().where(artists.c.id == artist_id).values(name_key=_name_key(name))
        )

    with op.batch_alter_table("artists", schema=None) as batch_op:
        batch_op.alter_column("name_key", existing_type=sa.String(255), nullable=False)
        batch_op.drop_index("ix_artists_name_lower")
        batch_op.create_index("ix_artists_name_key", ["name_key"])


def downgrade() -> None:
    with op.batch_alter_table("artists", schema=None) as batch_op:
        batch_op.drop_index("ix_artists_name_key")
        batch_op.drop_column("name_key")
    op.create_index("ix_artists_name_lower", "artists", [sa.text("lower(name)")])
