"""users and refresh tokens

Revision ID: 5c1e2f7a9b30
Revises:
Create Date: 2026-10-19 10:42:18.118305

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1e2f7a9b30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("email", sa.String(512), nullable=False, unique=True),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=False),
        sa.Column("password_hash", sa.String(128), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default="USER"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_users_email_lower", "users", [sa.text("lower(email)")])

    op.create_table(
        "user_providers",
        sa.Column("id", sa.String(512), primary_key=True),
        sa.Column("provider", sa.String(16), nullable=False),
        sa.Column("provider_id", sa.String(512), nullable=False),
        sa.Column(
            "user_guid",
            sa.String(512),
            sa.ForeignKey("users.guid", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "user_guid", "provider", "provider_id", name="uq_user_providers_link"
        ),
    )
    op.create_index(
        "uq_user_providers_identity",
        "user_providers",
        ["provider", "provider_id"],
        unique=True,
        postgresql_where=sa.text("provider <> 'LOCAL'"),
    )

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(512), primary_key=True),
        sa.Column("token_hash", sa.String(128), nullable=False),
        sa.Column(
            "owner_id",
            sa.String(512),
            sa.ForeignKey("users.guid", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replaced_by_token_id", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_refresh_tokens_owner", "refresh_tokens", ["owner_id"])
    op.create_index(
        "idx_refresh_tokens_revoked_expires",
        "refresh_tokens",
        ["revoked_at", "expires_at"],
    )


def downgrade() -> None:
    op.drop_table("refresh_tokens")
    op.drop_table("user_providers")
    op.drop_index("idx_users_email_lower", table_name="users")
    op.drop_table("users")
