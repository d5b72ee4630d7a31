"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

Hey future me - this is the whole schema in one go!

TABLES:
- artists: canonical artist, two identity spaces (catalog ID unique, ticketing ID indexed)
- venues: keyed by ticketing venue ID
- shows: unique on external_id AND on (artist_id, venue_id, date)
- songs: unique on (artist_id, normalized_title, normalized_album)
- setlists / setlist_songs: predicted voteable setlist, one per show
- played_setlists / played_setlist_songs: what was actually played
- artist_mapping_reviews: manual review queue for uncertain artist matches

Cascades: deleting a show removes its setlists and played setlists; deleting a song
only NULLs the played_setlist_songs.song_id reference.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # === Artists ===
    op.create_table(
        "artists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("primary_external_id", sa.String(64), nullable=True),
        sa.Column("secondary_external_id", sa.String(64), nullable=True),
        sa.Column("image_url", sa.String(512), nullable=True),
        sa.Column("popularity", sa.Integer, nullable=True),
        sa.Column("genres", sa.JSON, nullable=False),
        sa.Column("needs_backfill", sa.Boolean, nullable=False, server_default=sa.false()),
        _timestamp("last_synced_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_artists_name", "artists", ["name"])
    op.create_index(
        "ix_artists_primary_external_id", "artists", ["primary_external_id"], unique=True
    )
    op.create_index("ix_artists_secondary_external_id", "artists", ["secondary_external_id"])
    op.create_index("ix_artists_name_lower", "artists", [sa.text("lower(name)")])

    # === Venues ===
    op.create_table(
        "venues",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("external_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("city", sa.String(255), nullable=True),
        sa.Column("state", sa.String(64), nullable=True),
        sa.Column("country", sa.String(64), nullable=True),
        sa.Column("address", sa.String(512), nullable=True),
        sa.Column("latitude", sa.Float, nullable=True),
        sa.Column("longitude", sa.Float, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_venues_external_id", "venues", ["external_id"], unique=True)

    # === Shows ===
    op.create_table(
        "shows",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column(
            "artist_id",
            sa.String(36),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "venue_id",
            sa.String(36),
            sa.ForeignKey("venues.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("start_time", sa.String(16), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("ticket_url", sa.String(1024), nullable=True),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("trending_score", sa.Float, nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("artist_id", "venue_id", "date", name="uq_shows_artist_venue_date"),
    )
    op.create_index("ix_shows_external_id", "shows", ["external_id"], unique=True)
    op.create_index("ix_shows_artist_id", "shows", ["artist_id"])
    op.create_index("ix_shows_venue_id", "shows", ["venue_id"])
    op.create_index("ix_shows_date", "shows", ["date"])
    op.create_index("ix_shows_status", "shows", ["status"])

    # === Songs ===
    op.create_table(
        "songs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "artist_id",
            sa.String(36),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("album", sa.String(512), nullable=True),
        sa.Column("normalized_title", sa.String(512), nullable=False),
        sa.Column("normalized_album", sa.String(512), nullable=False, server_default=""),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("popularity", sa.Integer, nullable=True),
        sa.Column("preview_url", sa.String(1024), nullable=True),
        sa.Column("album_image_url", sa.String(1024), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "artist_id",
            "normalized_title",
            "normalized_album",
            name="uq_songs_artist_normalized",
        ),
    )
    op.create_index("ix_songs_artist_id", "songs", ["artist_id"])
    op.create_index("ix_songs_external_id", "songs", ["external_id"], unique=True)

    # === Predicted setlists ===
    op.create_table(
        "setlists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "show_id",
            sa.String(36),
            sa.ForeignKey("shows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False, server_default="Main Set"),
        _timestamp("created_at"),
    )
    op.create_index("ix_setlists_show_id", "setlists", ["show_id"], unique=True)

    op.create_table(
        "setlist_songs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "setlist_id",
            sa.String(36),
            sa.ForeignKey("setlists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "song_id",
            sa.String(36),
            sa.ForeignKey("songs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("vote_count", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("setlist_id", "song_id", name="uq_setlist_songs_song"),
        sa.UniqueConstraint("setlist_id", "position", name="uq_setlist_songs_position"),
    )
    op.create_index("ix_setlist_songs_setlist_id", "setlist_songs", ["setlist_id"])

    # === Played setlists ===
    op.create_table(
        "played_setlists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "show_id",
            sa.String(36),
            sa.ForeignKey("shows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(64), nullable=True),
        sa.Column("event_date", sa.Date, nullable=True),
        sa.Column("accuracy_score", sa.Float, nullable=True),
        _timestamp("imported_at"),
    )
    op.create_index("ix_played_setlists_show_id", "played_setlists", ["show_id"], unique=True)

    op.create_table(
        "played_setlist_songs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "played_setlist_id",
            sa.String(36),
            sa.ForeignKey("played_setlists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "song_id",
            sa.String(36),
            sa.ForeignKey("songs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.UniqueConstraint(
            "played_setlist_id", "position", name="uq_played_setlist_songs_position"
        ),
    )
    op.create_index(
        "ix_played_setlist_songs_played_setlist_id",
        "played_setlist_songs",
        ["played_setlist_id"],
    )

    # === Mapping review queue ===
    op.create_table(
        "artist_mapping_reviews",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "artist_id",
            sa.String(36),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("query_name", sa.String(255), nullable=False),
        sa.Column("secondary_external_id", sa.String(64), nullable=True),
        sa.Column("candidate_external_id", sa.String(64), nullable=True),
        sa.Column("candidate_name", sa.String(255), nullable=True),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("match_factors", sa.JSON, nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("artist_id", name="uq_artist_mapping_reviews_artist"),
    )
    op.create_index("ix_artist_mapping_reviews_outcome", "artist_mapping_reviews", ["outcome"])


def downgrade() -> None:
    op.drop_table("artist_mapping_reviews")
    op.drop_table("played_setlist_songs")
    op.drop_table("played_setlists")
    op.drop_table("setlist_songs")
    op.drop_table("setlists")
    op.drop_table("songs")
    op.drop_table("shows")
    op.drop_table("venues")
    op.drop_table("artists")
