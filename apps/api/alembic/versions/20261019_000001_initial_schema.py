"""create mess billing schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "mess_profiles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("qr_code_image", sa.Text(), nullable=True),
        sa.Column("qr_code_data", sa.Text(), nullable=True),
        sa.Column("qr_code_generated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_mess_profiles_owner_id"), "mess_profiles", ["owner_id"], unique=False)

    op.create_table(
        "meal_plans",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("billing_period", sa.String(), nullable=False),
        sa.Column("leave_credit_enabled", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_meal_plans_mess_id"), "meal_plans", ["mess_id"], unique=False)

    op.create_table(
        "mess_credits",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("total_credits", sa.Integer(), nullable=False),
        sa.Column("used_credits", sa.Integer(), nullable=False),
        sa.Column("available_credits", sa.Integer(), nullable=False),
        sa.Column("is_trial_active", sa.Boolean(), nullable=False),
        sa.Column("trial_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_credits_used", sa.Integer(), nullable=False),
        sa.Column("auto_renewal", sa.Boolean(), nullable=False),
        sa.Column("low_credit_threshold", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("monthly_user_count", sa.Integer(), nullable=False),
        sa.Column("last_user_count_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_billed_cycle", sa.String(), nullable=True),
        sa.Column("last_billing_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("used_credits >= 0", name="ck_mess_credits_used_non_negative"),
        sa.CheckConstraint("available_credits >= 0", name="ck_mess_credits_available_non_negative"),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_mess_credits_mess_id"), "mess_credits", ["mess_id"], unique=True)
    op.create_index(op.f("ix_mess_credits_status"), "mess_credits", ["status"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("processed_by", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_credit_transactions_mess_id"), "credit_transactions", ["mess_id"], unique=False)
    op.create_index(op.f("ix_credit_transactions_type"), "credit_transactions", ["type"], unique=False)
    op.create_index(op.f("ix_credit_transactions_created_at"), "credit_transactions", ["created_at"], unique=False)

    op.create_table(
        "credit_purchase_plans",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("base_credits", sa.Integer(), nullable=False),
        sa.Column("bonus_credits", sa.Integer(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_popular", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "free_trial_settings",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("is_globally_enabled", sa.Boolean(), nullable=False),
        sa.Column("default_trial_duration_days", sa.Integer(), nullable=False),
        sa.Column("trial_credits", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "mess_memberships",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("meal_plan_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payment_status", sa.String(), nullable=False),
        sa.Column("payment_amount", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("subscription_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.ForeignKeyConstraint(["meal_plan_id"], ["meal_plans.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_mess_memberships_user_id"), "mess_memberships", ["user_id"], unique=False)
    op.create_index(op.f("ix_mess_memberships_mess_id"), "mess_memberships", ["mess_id"], unique=False)
    op.create_index(op.f("ix_mess_memberships_meal_plan_id"), "mess_memberships", ["meal_plan_id"], unique=False)
    op.create_index(op.f("ix_mess_memberships_status"), "mess_memberships", ["status"], unique=False)

    op.create_table(
        "payment_verifications",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("membership_id", sa.String(), nullable=False),
        sa.Column("meal_plan_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=False),
        sa.Column("payment_screenshot_ref", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("pending_key", sa.String(), nullable=True),
        sa.Column("verified_by", sa.String(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.ForeignKeyConstraint(["membership_id"], ["mess_memberships.id"]),
        sa.ForeignKeyConstraint(["meal_plan_id"], ["meal_plans.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pending_key"),
    )
    op.create_index(op.f("ix_payment_verifications_user_id"), "payment_verifications", ["user_id"], unique=False)
    op.create_index(op.f("ix_payment_verifications_mess_id"), "payment_verifications", ["mess_id"], unique=False)
    op.create_index(
        op.f("ix_payment_verifications_membership_id"), "payment_verifications", ["membership_id"], unique=False
    )
    op.create_index(op.f("ix_payment_verifications_status"), "payment_verifications", ["status"], unique=False)

    op.create_table(
        "user_leaves",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("meal_plan_id", sa.String(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.ForeignKeyConstraint(["meal_plan_id"], ["meal_plans.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_user_leaves_user_id"), "user_leaves", ["user_id"], unique=False)
    op.create_index(op.f("ix_user_leaves_mess_id"), "user_leaves", ["mess_id"], unique=False)
    op.create_index(op.f("ix_user_leaves_status"), "user_leaves", ["status"], unique=False)

    op.create_table(
        "mess_bills",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("mess_id", sa.String(), nullable=False),
        sa.Column("cycle_key", sa.String(), nullable=False),
        sa.Column("cycle_start", sa.Date(), nullable=False),
        sa.Column("cycle_end", sa.Date(), nullable=False),
        sa.Column("member_count", sa.Integer(), nullable=False),
        sa.Column("base_amount", sa.Integer(), nullable=False),
        sa.Column("leave_credit", sa.Integer(), nullable=False),
        sa.Column("late_fee", sa.Integer(), nullable=False),
        sa.Column("net_due", sa.Integer(), nullable=False),
        sa.Column("breakdown_json", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("pending_key", sa.String(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["mess_id"], ["mess_profiles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pending_key"),
    )
    op.create_index(op.f("ix_mess_bills_mess_id"), "mess_bills", ["mess_id"], unique=False)
    op.create_index(op.f("ix_mess_bills_cycle_key"), "mess_bills", ["cycle_key"], unique=False)
    op.create_index(op.f("ix_mess_bills_status"), "mess_bills", ["status"], unique=False)
    op.create_index(op.f("ix_mess_bills_created_at"), "mess_bills", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_table("mess_bills")
    op.drop_table("user_leaves")
    op.drop_table("payment_verifications")
    op.drop_table("mess_memberships")
    op.drop_table("free_trial_settings")
    op.drop_table("credit_purchase_plans")
    op.drop_table("credit_transactions")
    op.drop_table("mess_credits")
    op.drop_table("meal_plans")
    op.drop_table("mess_profiles")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
