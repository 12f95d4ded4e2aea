from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None

ENUM_NAMES = (
    "activitytype",
    "blacklisttype",
    "videoimportstate",
    "thumbnailorigin",
    "thumbnailtype",
    "videostate",
    "videoprivacy",
)


def upgrade() -> None:
    privacy_enum = sa.Enum("public", "unlisted", "private", "internal", name="videoprivacy")
    state_enum = sa.Enum("published", "to_transcode", "to_import", name="videostate")
    thumbnail_type_enum = sa.Enum("miniature", "preview", name="thumbnailtype")
    thumbnail_origin_enum = sa.Enum("uploaded", "generated", "fetched", name="thumbnailorigin")
    import_state_enum = sa.Enum("pending", "success", "failed", name="videoimportstate")
    blacklist_type_enum = sa.Enum("manual", "auto", name="blacklisttype")
    activity_type_enum = sa.Enum("create", "update", "delete", "view", "channel_change", name="activitytype")

    op.create_table(
        "video_channels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "videos",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("support", sa.Text(), nullable=True),
        sa.Column("channel_id", sa.Integer(), sa.ForeignKey("video_channels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("privacy", privacy_enum, nullable=False),
        sa.Column("category", sa.Integer(), nullable=True),
        sa.Column("licence", sa.Integer(), nullable=True),
        sa.Column("language", sa.String(length=16), nullable=True),
        sa.Column("nsfw", sa.Boolean(), nullable=False),
        sa.Column("comments_enabled", sa.Boolean(), nullable=False),
        sa.Column("download_enabled", sa.Boolean(), nullable=False),
        sa.Column("wait_transcoding", sa.Boolean(), nullable=False),
        sa.Column("state", state_enum, nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("is_live", sa.Boolean(), nullable=False),
        sa.Column("remote", sa.Boolean(), nullable=False),
        sa.Column("views", sa.Integer(), nullable=False),
        sa.Column("originally_published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "video_files",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("extname", sa.String(length=16), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("resolution", sa.Integer(), nullable=False),
        sa.Column("fps", sa.Float(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("info_hash", sa.String(length=40), nullable=True),
        sa.Column("torrent_filename", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_video_files_video_id", "video_files", ["video_id"])

    op.create_table(
        "thumbnails",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", thumbnail_type_enum, nullable=False),
        sa.Column("origin", thumbnail_origin_enum, nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("automatically_generated", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("video_id", "type", name="uq_thumbnails_video_type"),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
    )

    op.create_table(
        "video_tags",
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "video_captions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False),
        sa.Column("language", sa.String(length=16), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("video_id", "language", name="uq_video_captions_video_language"),
    )

    op.create_table(
        "video_imports",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("target_url", sa.String(length=2048), nullable=True),
        sa.Column("magnet_uri", sa.Text(), nullable=True),
        sa.Column("torrent_name", sa.String(length=255), nullable=True),
        sa.Column("state", import_state_enum, nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "schedule_video_updates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("update_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("privacy", privacy_enum, nullable=True),
    )

    op.create_table(
        "video_blacklists",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_id", sa.Integer(), sa.ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("type", blacklist_type_enum, nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("unfederated", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "federation_activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("video_uuid", sa.String(length=36), nullable=False),
        sa.Column("activity_type", activity_type_enum, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_federation_activities_video_uuid", "federation_activities", ["video_uuid"])


def downgrade() -> None:
    op.drop_index("ix_federation_activities_video_uuid", table_name="federation_activities")
    op.drop_table("federation_activities")
    op.drop_table("video_blacklists")
    op.drop_table("schedule_video_updates")
    op.drop_table("video_imports")
    op.drop_table("video_captions")
    op.drop_table("video_tags")
    op.drop_table("tags")
    op.drop_table("thumbnails")
    op.drop_index("ix_video_files_video_id", table_name="video_files")
    op.drop_table("video_files")
    op.drop_table("videos")
    op.drop_table("video_channels")

    bind = op.get_bind()
    for name in ENUM_NAMES:
        sa.Enum(name=name).drop(bind, checkfirst=True)
