"""Create portal tables.

Revision ID: 000
Revises:
Create Date: 2026-10-17

This migration creates the base tables:
- users
- faq_entries
- groups, responsible_persons, group_members, group_responsible_users
- status_reports
- addresses
- antraege, antrag_configurations
- newsletter_items, newsletter_settings, hashed_recipients
- newsletter_analytics and the click/open fingerprint tables
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types store the member names
user_role = sa.Enum("ADMIN", "MITGLIED", name="user_role")
faq_status = sa.Enum("ACTIVE", "ARCHIVED", name="faq_status")
group_status = sa.Enum("NEW", "ACTIVE", "ARCHIVED", name="group_status")
status_report_status = sa.Enum("NEW", "ACTIVE", "ARCHIVED", "REJECTED", name="status_report_status")
antrag_status = sa.Enum("NEU", "AKZEPTIERT", "ABGELEHNT", name="antrag_status")
newsletter_status = sa.Enum(
    "DRAFT", "SENDING", "SENT", "RETRYING", "PARTIALLY_FAILED", "FAILED", name="newsletter_status"
)


def timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(50), nullable=True),
        sa.Column("last_name", sa.String(50), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("password_reset_token", sa.String(255), nullable=True),
        sa.Column("password_reset_expires", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Create faq_entries table
    op.create_table(
        "faq_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", faq_status, nullable=False),
        sa.Column("created_by_id", sa.Uuid(), nullable=True),
        sa.Column("updated_by_id", sa.Uuid(), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["updated_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_faq_entries_title", "faq_entries", ["title"])
    op.create_index("ix_faq_entries_status", "faq_entries", ["status"])

    # Create groups table
    op.create_table(
        "groups",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("logo_url", sa.String(500), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("status", group_status, nullable=False),
        sa.Column("recurring_patterns", sa.JSON(), nullable=True),
        sa.Column("meeting_time", sa.String(5), nullable=True),
        sa.Column("meeting_street", sa.String(200), nullable=True),
        sa.Column("meeting_city", sa.String(100), nullable=True),
        sa.Column("meeting_postal_code", sa.String(10), nullable=True),
        sa.Column("meeting_location_details", sa.Text(), nullable=True),
        *timestamps(),
    )
    op.create_index("ix_groups_slug", "groups", ["slug"], unique=True)
    op.create_index("ix_groups_status", "groups", ["status"])

    op.create_table(
        "responsible_persons",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_responsible_persons_group_id", "responsible_persons", ["group_id"])

    op.create_table(
        "group_members",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "group_id", name="uq_group_member"),
    )
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])

    op.create_table(
        "group_responsible_users",
        sa.Column("group_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    # Create status_reports table
    op.create_table(
        "status_reports",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("reporter_first_name", sa.String(50), nullable=False),
        sa.Column("reporter_last_name", sa.String(50), nullable=False),
        sa.Column("file_urls", sa.JSON(), nullable=False),
        sa.Column("status", status_report_status, nullable=False),
        sa.Column("group_id", sa.Uuid(), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_status_reports_status", "status_reports", ["status"])
    op.create_index("ix_status_reports_group_id", "status_reports", ["group_id"])

    # Create addresses table
    op.create_table(
        "addresses",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("street", sa.String(200), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("postal_code", sa.String(10), nullable=False),
        sa.Column("location_details", sa.Text(), nullable=True),
        *timestamps(),
    )
    op.create_index("ix_addresses_name", "addresses", ["name"], unique=True)

    # Create antraege tables
    op.create_table(
        "antraege",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("purposes", sa.JSON(), nullable=False),
        sa.Column("file_urls", sa.JSON(), nullable=False),
        sa.Column("status", antrag_status, nullable=False),
        sa.Column("decision_comment", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.String(150), nullable=True),
        sa.Column("decided_by_id", sa.Uuid(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        *timestamps(),
        sa.ForeignKeyConstraint(["decided_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_antraege_status", "antraege", ["status"])

    op.create_table(
        "antrag_configurations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_emails", sa.Text(), nullable=False),
        *timestamps(),
    )

    # Create newsletter tables
    op.create_table(
        "newsletter_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("subject", sa.String(200), nullable=False),
        sa.Column("introduction_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("status", newsletter_status, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recipient_count", sa.Integer(), nullable=True),
        sa.Column("sending_state", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *timestamps(),
    )
    op.create_index("ix_newsletter_items_status", "newsletter_items", ["status"])

    op.create_table(
        "newsletter_settings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("from_email", sa.String(254), nullable=False),
        sa.Column("from_name", sa.String(100), nullable=False),
        sa.Column("reply_to_email", sa.String(254), nullable=True),
        sa.Column("subject_template", sa.String(200), nullable=False),
        sa.Column("email_salt", sa.String(64), nullable=True),
        sa.Column("test_email_recipients", sa.Text(), nullable=True),
        sa.Column("header_logo", sa.String(500), nullable=True),
        sa.Column("header_banner", sa.String(500), nullable=True),
        sa.Column("footer_text", sa.Text(), nullable=True),
        sa.Column("unsubscribe_link", sa.String(500), nullable=True),
        sa.Column("chunk_size", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("chunk_delay_ms", sa.Integer(), nullable=False, server_default="500"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("max_backoff_delay_ms", sa.Integer(), nullable=False, server_default="10000"),
        sa.Column("retry_chunk_sizes", sa.String(100), nullable=False, server_default="10,5,1"),
        sa.Column("email_timeout_ms", sa.Integer(), nullable=False, server_default="30000"),
        sa.Column("connection_timeout_ms", sa.Integer(), nullable=False, server_default="20000"),
        sa.Column("max_status_reports_per_group", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("max_groups_with_reports", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("ai_system_prompt", sa.Text(), nullable=True),
        sa.Column("ai_model", sa.String(100), nullable=True),
        sa.Column("ai_topic_extraction_prompt", sa.Text(), nullable=True),
        sa.Column("ai_refinement_prompt", sa.Text(), nullable=True),
        *timestamps(),
    )

    op.create_table(
        "hashed_recipients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("hashed_email", sa.String(64), nullable=False),
        sa.Column(
            "first_seen",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("last_sent", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_hashed_recipients_hashed_email", "hashed_recipients", ["hashed_email"], unique=True
    )

    # Create analytics tables
    op.create_table(
        "newsletter_analytics",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("newsletter_id", sa.Uuid(), nullable=False, unique=True),
        sa.Column("total_recipients", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_opens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_opens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pixel_token", sa.String(64), nullable=False),
        *timestamps(),
        sa.ForeignKeyConstraint(["newsletter_id"], ["newsletter_items.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_newsletter_analytics_pixel_token", "newsletter_analytics", ["pixel_token"], unique=True
    )

    op.create_table(
        "newsletter_link_clicks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("analytics_id", sa.Uuid(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("link_type", sa.String(20), nullable=False, server_default="other"),
        sa.Column("link_id", sa.String(100), nullable=True),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unique_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_click", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_click", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["analytics_id"], ["newsletter_analytics.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("analytics_id", "url", name="uq_link_click_url"),
    )
    op.create_index(
        "ix_newsletter_link_clicks_analytics_id", "newsletter_link_clicks", ["analytics_id"]
    )

    op.create_table(
        "newsletter_fingerprints",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("analytics_id", sa.Uuid(), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("open_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["analytics_id"], ["newsletter_analytics.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("analytics_id", "fingerprint", name="uq_newsletter_fingerprint"),
    )
    op.create_index(
        "ix_newsletter_fingerprints_analytics_id", "newsletter_fingerprints", ["analytics_id"]
    )

    op.create_table(
        "newsletter_link_click_fingerprints",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("link_click_id", sa.Uuid(), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("click_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("first_click", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_click", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["link_click_id"], ["newsletter_link_clicks.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("link_click_id", "fingerprint", name="uq_link_click_fingerprint"),
    )
    op.create_index(
        "ix_newsletter_link_click_fingerprints_link_click_id",
        "newsletter_link_click_fingerprints",
        ["link_click_id"],
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table("newsletter_link_click_fingerprints")
    op.drop_table("newsletter_fingerprints")
    op.drop_table("newsletter_link_clicks")
    op.drop_table("newsletter_analytics")
    op.drop_table("hashed_recipients")
    op.drop_table("newsletter_settings")
    op.drop_table("newsletter_items")
    op.drop_table("antrag_configurations")
    op.drop_table("antraege")
    op.drop_table("addresses")
    op.drop_table("status_reports")
    op.drop_table("group_responsible_users")
    op.drop_table("group_members")
    op.drop_table("responsible_persons")
    op.drop_table("groups")
    op.drop_table("faq_entries")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        newsletter_status,
        antrag_status,
        status_report_status,
        group_status,
        faq_status,
        user_role,
    ):
        enum.drop(bind, checkfirst=True)
