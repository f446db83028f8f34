"""Initial sync schema: raw staging, run logs, canonical entities, settings.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("b2chat_id", sa.String(150), nullable=False),
        sa.Column("last_sync_id", sa.String(100)),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
    ]


def _raw_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("source_id", sa.String(150), nullable=False),
        sa.Column("sync_id", sa.String(100), nullable=False),
        sa.Column("payload", sa.Text, nullable=False),
        sa.Column("api_page", sa.Integer, nullable=False),
        sa.Column("api_offset", sa.Integer, nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("processing_status", sa.String(20), nullable=False),
        sa.Column("processing_error", sa.Text),
        sa.Column("processing_attempt", sa.Integer, nullable=False),
        sa.Column("claimed_by", sa.String(100)),
        sa.UniqueConstraint("sync_id", "source_id", name=f"uq_{name}_sync_source"),
    )
    op.create_index(f"ix_{name}_source_id", name, ["source_id"])
    op.create_index(f"ix_{name}_sync_id", name, ["sync_id"])
    op.create_index(f"ix_{name}_status_fetched", name, ["processing_status", "fetched_at"])


def _sla_columns(suffix: str = "") -> list[sa.Column]:
    return [
        sa.Column(f"time_to_pickup{suffix}", sa.Integer),
        sa.Column(f"first_response_time{suffix}", sa.Integer),
        sa.Column(f"avg_response_time{suffix}", sa.Integer),
        sa.Column(f"resolution_time{suffix}", sa.Integer),
        sa.Column(f"pickup_sla{suffix}", sa.Boolean),
        sa.Column(f"first_response_sla{suffix}", sa.Boolean),
        sa.Column(f"avg_response_sla{suffix}", sa.Boolean),
        sa.Column(f"resolution_sla{suffix}", sa.Boolean),
        sa.Column(f"overall_sla{suffix}", sa.Boolean),
    ]


def upgrade() -> None:
    _raw_table("raw_contact")
    _raw_table("raw_chat")

    op.create_table(
        "extract_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("sync_id", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("operation", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("records_fetched", sa.Integer, nullable=False),
        sa.Column("total_pages", sa.Integer, nullable=False),
        sa.Column("api_call_count", sa.Integer, nullable=False),
        sa.Column("date_range_from", sa.DateTime(timezone=True)),
        sa.Column("date_range_to", sa.DateTime(timezone=True)),
        sa.Column("error_message", sa.Text),
        sa.Column("metadata_json", sa.JSON),
        sa.Column("user_id", sa.String(100)),
        *_timestamps(),
    )
    op.create_index("ix_extract_log_sync_id", "extract_log", ["sync_id"], unique=True)
    op.create_index("ix_extract_log_entity_status", "extract_log", ["entity_type", "status"])

    op.create_table(
        "transform_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("sync_id", sa.String(100), nullable=False),
        sa.Column("extract_sync_id", sa.String(100)),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("records_processed", sa.Integer, nullable=False),
        sa.Column("records_created", sa.Integer, nullable=False),
        sa.Column("records_updated", sa.Integer, nullable=False),
        sa.Column("records_skipped", sa.Integer, nullable=False),
        sa.Column("records_failed", sa.Integer, nullable=False),
        sa.Column("validation_warnings", sa.Integer, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("metadata_json", sa.JSON),
        sa.Column("user_id", sa.String(100)),
        *_timestamps(),
    )
    op.create_index("ix_transform_log_sync_id", "transform_log", ["sync_id"], unique=True)
    op.create_index("ix_transform_log_extract_sync_id", "transform_log", ["extract_sync_id"])

    op.create_table(
        "contact",
        sa.Column("id", sa.Uuid, primary_key=True),
        *_sync_columns(),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("mobile", sa.String(50)),
        sa.Column("phone_number", sa.String(50)),
        sa.Column("landline", sa.String(50)),
        sa.Column("email", sa.String(255)),
        sa.Column("identification", sa.String(100)),
        sa.Column("address", sa.Text),
        sa.Column("city", sa.String(100)),
        sa.Column("country", sa.String(100)),
        sa.Column("company", sa.String(200)),
        sa.Column("merchant_id", sa.String(100)),
        sa.Column("custom_attributes", sa.JSON),
        sa.Column("tags", sa.JSON),
        sa.Column("source_created_at", sa.DateTime(timezone=True)),
        sa.Column("source_updated_at", sa.DateTime(timezone=True)),
        sa.Column("needs_full_sync", sa.Boolean, nullable=False),
        sa.Column("sync_source", sa.String(20), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_contact_b2chat_id", "contact", ["b2chat_id"], unique=True)
    op.create_index("ix_contact_mobile", "contact", ["mobile"])
    op.create_index("ix_contact_email", "contact", ["email"])

    op.create_table(
        "agent",
        sa.Column("id", sa.Uuid, primary_key=True),
        *_sync_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("username", sa.String(150)),
        sa.Column("email", sa.String(255)),
        *_timestamps(),
    )
    op.create_index("ix_agent_b2chat_id", "agent", ["b2chat_id"], unique=True)

    op.create_table(
        "department",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("b2chat_code", sa.String(150), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_department_b2chat_code", "department", ["b2chat_code"], unique=True)

    op.create_table(
        "chat",
        sa.Column("id", sa.Uuid, primary_key=True),
        *_sync_columns(),
        sa.Column("alias", sa.String(255)),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False),
        sa.Column("agent_id", sa.Uuid, sa.ForeignKey("agent.id", ondelete="SET NULL")),
        sa.Column("contact_id", sa.Uuid, sa.ForeignKey("contact.id", ondelete="SET NULL")),
        sa.Column("department_id", sa.Uuid, sa.ForeignKey("department.id", ondelete="SET NULL")),
        sa.Column("is_agent_available", sa.Boolean),
        sa.Column("viewer_url", sa.Text),
        sa.Column("tags", sa.JSON),
        sa.Column("source_created_at", sa.DateTime(timezone=True)),
        sa.Column("opened_at", sa.DateTime(timezone=True)),
        sa.Column("picked_up_at", sa.DateTime(timezone=True)),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("duration_seconds", sa.Integer),
        sa.Column("poll_started_at", sa.DateTime(timezone=True)),
        sa.Column("poll_completed_at", sa.DateTime(timezone=True)),
        sa.Column("poll_abandoned_at", sa.DateTime(timezone=True)),
        sa.Column("poll_response", sa.JSON),
        *_sla_columns(),
        *_sla_columns("_bh"),
        *_timestamps(),
    )
    op.create_index("ix_chat_b2chat_id", "chat", ["b2chat_id"], unique=True)
    op.create_index("ix_chat_agent_id", "chat", ["agent_id"])
    op.create_index("ix_chat_contact_id", "chat", ["contact_id"])
    op.create_index("ix_chat_status_opened", "chat", ["status", "opened_at"])

    op.create_table(
        "message",
        sa.Column("id", sa.String(80), primary_key=True),
        sa.Column("chat_id", sa.Uuid, sa.ForeignKey("chat.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("incoming", sa.Boolean, nullable=False),
        sa.Column("message_type", sa.String(10), nullable=False),
        sa.Column("body", sa.Text),
        sa.Column("caption", sa.Text),
        sa.Column("broadcasted", sa.Boolean, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_message_chat_id", "message", ["chat_id"])
    op.create_index("ix_message_chat_sequence", "message", ["chat_id", "sequence"])

    op.create_table(
        "chat_status_history",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("chat_id", sa.Uuid, sa.ForeignKey("chat.id", ondelete="CASCADE"), nullable=False),
        sa.Column("previous_status", sa.String(30)),
        sa.Column("new_status", sa.String(30), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sync_id", sa.String(100)),
        *_timestamps(),
    )
    op.create_index("ix_chat_status_history_chat_id", "chat_status_history", ["chat_id"])

    op.create_table(
        "system_setting",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.JSON),
        sa.Column("description", sa.Text),
        *_timestamps(),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.String(100)),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(50)),
        sa.Column("resource_id", sa.String(100)),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("metadata_json", sa.JSON),
        *_timestamps(),
    )
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "system_setting",
        "chat_status_history",
        "message",
        "chat",
        "department",
        "agent",
        "contact",
        "transform_log",
        "extract_log",
        "raw_chat",
        "raw_contact",
    ):
        op.drop_table(table)
