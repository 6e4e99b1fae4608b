"""add_gif_templates_table

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "1a2b3c4d5e6f"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "gif_templates",
        sa.Column("template_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        # Storage locations
        sa.Column("video_url", sa.String(), nullable=True),
        sa.Column("gif_url", sa.String(), nullable=True),
        # Overlay variables: [{name, value, styles}]
        sa.Column("variables", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        # Timestamps
        sa.Column(
            "created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False
        ),
        sa.PrimaryKeyConstraint("template_id"),
    )

    op.create_index(
        op.f("ix_gif_templates_template_id"), "gif_templates", ["template_id"], unique=True
    )
    op.create_index(
        "ix_gif_templates_created_at", "gif_templates", ["created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_gif_templates_created_at", table_name="gif_templates")
    op.drop_index(op.f("ix_gif_templates_template_id"), table_name="gif_templates")

    op.drop_table("gif_templates")
