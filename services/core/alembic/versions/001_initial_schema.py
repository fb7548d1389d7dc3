"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the lead queue tables:
- queue_leads
- training_examples
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Queue leads table
    op.create_table(
        "queue_leads",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "source",
            sa.Enum("order_match", "conversation", name="queue_lead_source_enum"),
            nullable=False,
            server_default="conversation",
        ),
        sa.Column("conversation_id", sa.String(128), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(64), nullable=True),
        sa.Column("phone_key", sa.String(32), nullable=True),
        sa.Column("images", sa.JSON, nullable=False),
        sa.Column("context_messages", sa.JSON, nullable=False),
        sa.Column("image_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("image_set_key", sa.String(64), nullable=False),
        sa.Column("first_image_at", sa.DateTime, nullable=False),
        sa.Column("last_image_at", sa.DateTime, nullable=True),
        sa.Column("order_id", sa.String(128), nullable=True),
        sa.Column("order_name", sa.String(64), nullable=True),
        sa.Column(
            "match_confidence",
            sa.Enum("high", "medium", "low", name="queue_lead_confidence_enum"),
            nullable=True,
        ),
        sa.Column("name_score", sa.Integer, nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "new", "claimed", "analyzed", "quoted", "completed", "skipped",
                name="queue_lead_status_enum",
            ),
            nullable=False,
            server_default="new",
        ),
        sa.Column("claimed_by", sa.String(128), nullable=True),
        sa.Column("claimed_at", sa.DateTime, nullable=True),
        sa.Column("analysis_result", sa.JSON, nullable=True),
        sa.Column("selected_services", sa.JSON, nullable=True),
        sa.Column("estimation_id", sa.String(128), nullable=True),
        sa.Column("draft_order_id", sa.String(128), nullable=True),
        sa.Column("draft_order_url", sa.String(512), nullable=True),
        sa.Column("training_payload", sa.JSON, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("completed_by", sa.String(128), nullable=True),
        sa.Column(
            "completed_without_claim", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("image_set_key", name="uq_queue_lead_image_set"),
    )
    op.create_index("idx_queue_lead_status", "queue_leads", ["status", "first_image_at"])
    op.create_index("idx_queue_lead_claimed_by", "queue_leads", ["claimed_by"])
    op.create_index("idx_queue_lead_phone_key", "queue_leads", ["phone_key"])
    op.create_index("idx_queue_lead_order", "queue_leads", ["order_id"])

    # Training examples table
    op.create_table(
        "training_examples",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.BigInteger, nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=False),
        sa.Column("image_source", sa.String(32), nullable=False, server_default="zoko"),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("ai_category", sa.String(64), nullable=True),
        sa.Column("ai_sub_type", sa.String(128), nullable=True),
        sa.Column("ai_material", sa.String(64), nullable=True),
        sa.Column("ai_condition", sa.String(32), nullable=True),
        sa.Column("ai_issues", sa.JSON, nullable=True),
        sa.Column("correct_services", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "verified", "rejected", name="training_example_status_enum"),
            nullable=False,
            server_default="verified",
        ),
        sa.Column("verified_by", sa.String(128), nullable=True),
        sa.Column("verified_at", sa.DateTime, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["lead_id"], ["queue_leads.id"], name="fk_training_example_lead"
        ),
    )
    op.create_index("idx_training_example_lead", "training_examples", ["lead_id"])
    op.create_index("idx_training_example_category", "training_examples", ["ai_category"])


def downgrade() -> None:
    op.drop_table("training_examples")
    op.drop_table("queue_leads")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS training_example_status_enum")
    op.execute("DROP TYPE IF EXISTS queue_lead_status_enum")
    op.execute("DROP TYPE IF EXISTS queue_lead_confidence_enum")
    op.execute("DROP TYPE IF EXISTS queue_lead_source_enum")
