"""Create users, loan applications, assignment requests and app settings"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            server_onupdate=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="officer"),
        sa.Column("branches", sa.Text(), nullable=False, server_default=""),
        sa.Column("hashed_password", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "role IN ('officer', 'manager', 'manager_viewer', 'admin', 'admin_editor')",
            name="ck_users_role",
        ),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "loan_applications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("wp_entry_id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("mobile", sa.String(length=64), nullable=False),
        sa.Column("branch", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("assigned_to_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("verification_status", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("closed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("closed_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'approved', 'rejected', 'cancelled')",
            name="ck_loan_app_status",
        ),
    )
    op.create_index("ix_loan_applications_wp_entry_id", "loan_applications", ["wp_entry_id"], unique=True)
    op.create_index("ix_loan_applications_mobile", "loan_applications", ["mobile"])
    op.create_index("ix_loan_applications_branch", "loan_applications", ["branch"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])
    op.create_index("ix_loan_applications_created_at", "loan_applications", ["created_at"])
    op.create_index(
        "ix_loan_applications_status_assignee", "loan_applications", ["status", "assigned_to_id"]
    )

    op.create_table(
        "assignment_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "loan_id",
            sa.Integer(),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("handled_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("handled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_assignment_request_status",
        ),
    )
    op.create_index("ix_assignment_requests_loan_id", "assignment_requests", ["loan_id"])
    op.create_index(
        "uq_assignment_requests_pending_pair",
        "assignment_requests",
        ["loan_id", "requested_by_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "app_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sync_interval", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("ad_server", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("ad_port", sa.Integer(), nullable=False, server_default="389"),
        sa.Column("ad_base_dn", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("ad_domain", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("ad_bind_user", sa.String(length=255), nullable=False, server_default=""),
        # Fernet token, never the plain password.
        sa.Column("ad_bind_password", sa.LargeBinary(), nullable=True),
        sa.Column("ad_group_filter", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("logo_url", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("favicon_url", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("last_sync_time", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("sync_interval BETWEEN 1 AND 60", name="ck_app_settings_sync_interval"),
    )


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_index("uq_assignment_requests_pending_pair", table_name="assignment_requests")
    op.drop_index("ix_assignment_requests_loan_id", table_name="assignment_requests")
    op.drop_table("assignment_requests")
    op.drop_index("ix_loan_applications_status_assignee", table_name="loan_applications")
    op.drop_index("ix_loan_applications_created_at", table_name="loan_applications")
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_branch", table_name="loan_applications")
    op.drop_index("ix_loan_applications_mobile", table_name="loan_applications")
    op.drop_index("ix_loan_applications_wp_entry_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
