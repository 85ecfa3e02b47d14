"""Referral program schema.

Revision ID: 0001
Revises: None
Create Date: 2026-01-01

Creates all tables:
- users, refresh_tokens, system_settings: accounts, sessions and global settings
- invite_codes, invite_registrations, invite_events, invite_stats: invitation tracking
- device_fingerprints ... account_freezes: fraud detection and enforcement
- reward_configs, reward_records, milestone_markers: reward bookkeeping
- credit_records, credit_usage: credit ledger
- badges, user_badges, titles, user_titles: achievements
- notifications, notification_preferences: user notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _user_fk(ondelete: str = "CASCADE"):
    return sa.ForeignKey("users.id", ondelete=ondelete)


ENUM_TYPES = [
    "userrole",
    "inviteeventtype",
    "risklevel",
    "suspiciousactivitytype",
    "alerttype",
    "alertseverity",
    "alertstatus",
    "reviewcasetype",
    "reviewcasestatus",
    "reviewaction",
    "rewardtype",
    "rewardsourcetype",
    "credittype",
    "creditsource",
    "badgecategory",
    "badgerarity",
    "notificationtype",
    "notificationchannel",
    "notificationstatus",
]


def upgrade() -> None:
    risk_level = postgresql.ENUM("low", "medium", "high", name="risklevel", create_type=False)
    reward_type = postgresql.ENUM("ai_credits", "badge", "title", "premium_days", name="rewardtype", create_type=False)
    notification_type = postgresql.ENUM(
        "invite_success", "invitee_activated", "reward_received",
        "invite_code_expiring", "account_frozen", "system",
        name="notificationtype", create_type=False,
    )
    risk_level.create(op.get_bind(), checkfirst=True)
    reward_type.create(op.get_bind(), checkfirst=True)
    notification_type.create(op.get_bind(), checkfirst=True)

    # Accounts
    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("username", sa.String(100), unique=True, nullable=False, index=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("admin", "user", name="userrole"), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_activated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("registration_ip", sa.String(45), nullable=True, index=True),
        sa.Column("registration_user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_login", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_registration_ip_created", "users", ["registration_ip", "created_at"])

    op.create_table(
        "refresh_tokens",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("token_hash", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
    )
    op.create_index("ix_refresh_tokens_user_valid", "refresh_tokens", ["user_id", "revoked_at"])

    op.create_table(
        "system_settings",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("setup_completed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("setup_completed_at", sa.DateTime(), nullable=True),
        sa.Column("registration_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("require_invite_code", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("referral_program_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("smtp_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("smtp_host", sa.String(255), nullable=True),
        sa.Column("smtp_port", sa.Integer(), nullable=False, server_default="587"),
        sa.Column("smtp_username", sa.String(255), nullable=True),
        sa.Column("smtp_password_encrypted", sa.Text(), nullable=True),
        sa.Column("smtp_use_tls", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("smtp_use_ssl", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("smtp_from_email", sa.String(255), nullable=True),
        sa.Column("smtp_from_name", sa.String(255), nullable=False, server_default="Inspi"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Invitations
    op.create_table(
        "invite_codes",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("code", sa.String(16), unique=True, nullable=False, index=True),
        sa.Column("inviter_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_usage", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("expiry_notified_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_invite_codes_inviter_active", "invite_codes", ["inviter_id", "is_active"])

    op.create_table(
        "invite_registrations",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("invite_code_id", _uuid(), sa.ForeignKey("invite_codes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("inviter_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("invitee_id", _uuid(), _user_fk(), nullable=False, unique=True),
        sa.Column("registered_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("is_activated", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("rewards_claimed", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("rewards_claimed_at", sa.DateTime(), nullable=True),
        sa.Column("claim_deadline", sa.DateTime(), nullable=False),
        sa.Column("rewards_withheld", sa.Boolean(), nullable=False, server_default="false"),
    )
    op.create_index("ix_invite_registrations_registered", "invite_registrations", ["registered_at"])

    op.create_table(
        "invite_events",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "type",
            sa.Enum(
                "code_generated", "code_shared", "user_registered", "user_activated", "reward_granted",
                name="inviteeventtype",
            ),
            nullable=False,
        ),
        sa.Column("inviter_id", _uuid(), _user_fk("SET NULL"), nullable=True, index=True),
        sa.Column("invitee_id", _uuid(), _user_fk("SET NULL"), nullable=True),
        sa.Column("invite_code_id", _uuid(), sa.ForeignKey("invite_codes.id", ondelete="SET NULL"), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_invite_events_type_timestamp", "invite_events", ["type", "timestamp"])

    op.create_table(
        "invite_stats",
        sa.Column("user_id", _uuid(), _user_fk(), primary_key=True),
        sa.Column("total_invites", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_registrations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active_invitees", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rewards_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Fraud detection
    op.create_table(
        "device_fingerprints",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("fingerprint_hash", sa.String(64), nullable=False, index=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("screen_resolution", sa.String(32), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("language", sa.String(32), nullable=True),
        sa.Column("platform", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "suspicious_activities",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk("SET NULL"), nullable=True, index=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column(
            "type",
            sa.Enum(
                "ip_frequency", "device_reuse", "self_invitation", "batch_registration", "pattern_anomaly",
                name="suspiciousactivitytype",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", risk_level, nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_suspicious_activities_created", "suspicious_activities", ["created_at"])

    op.create_table(
        "user_risk_profiles",
        sa.Column("user_id", _uuid(), _user_fk(), primary_key=True),
        sa.Column("risk_level", risk_level, nullable=False, server_default="low"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("recovered_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "user_bans",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
    )
    op.create_index("ix_user_bans_user_active", "user_bans", ["user_id", "is_active"])

    op.create_table(
        "anomaly_alerts",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column(
            "alert_type",
            sa.Enum("behavior_anomaly", "pattern_deviation", "velocity_spike", "network_abuse", name="alerttype"),
            nullable=False,
        ),
        sa.Column(
            "severity",
            sa.Enum("low", "medium", "high", "critical", name="alertseverity"),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "investigating", "resolved", "false_positive", name="alertstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_by_id", _uuid(), _user_fk("SET NULL"), nullable=True),
    )

    op.create_table(
        "review_cases",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column(
            "case_type",
            sa.Enum(
                "suspicious_behavior", "fraud_detection", "reward_dispute", "account_verification",
                name="reviewcasetype",
            ),
            nullable=False,
        ),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column(
            "status",
            sa.Enum("pending", "in_review", "approved", "rejected", "escalated", name="reviewcasestatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("assigned_to_id", _uuid(), _user_fk("SET NULL"), nullable=True),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column(
            "decision_action",
            sa.Enum("approve", "reject", "freeze", "ban", "recover_rewards", name="reviewaction"),
            nullable=True,
        ),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column("decided_by_id", _uuid(), _user_fk("SET NULL"), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "account_freezes",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("frozen_features", sa.JSON(), nullable=True),
        sa.Column("created_by_id", _uuid(), _user_fk("SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
    )
    op.create_index("ix_account_freezes_user_active", "account_freezes", ["user_id", "is_active"])

    # Rewards
    op.create_table(
        "reward_configs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("event_type", sa.String(50), nullable=False, index=True),
        sa.Column("reward_type", reward_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("badge_id", sa.String(100), nullable=True),
        sa.Column("title_id", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "reward_records",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("reward_type", reward_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("badge_id", sa.String(100), nullable=True),
        sa.Column("title_id", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "source_type",
            sa.Enum("invite_registration", "invite_activation", "milestone", "admin", name="rewardsourcetype"),
            nullable=False,
        ),
        sa.Column("source_id", _uuid(), nullable=True),
        sa.Column("granted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_reward_records_user_type", "reward_records", ["user_id", "reward_type"])
    op.create_index("ix_reward_records_granted", "reward_records", ["granted_at"])

    op.create_table(
        "milestone_markers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("milestone", sa.Integer(), nullable=False),
        sa.Column("reached_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "kind", "milestone", name="uq_milestone_markers_user_kind_value"),
    )

    # Credits
    op.create_table(
        "credit_records",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("remaining", sa.Integer(), nullable=True),
        sa.Column("type", sa.Enum("earned", "used", "expired", "refunded", name="credittype"), nullable=False),
        sa.Column(
            "source",
            sa.Enum(
                "invite_reward", "milestone_reward", "activity_reward",
                "purchase", "admin_grant", "system_refund",
                name="creditsource",
            ),
            nullable=False,
        ),
        sa.Column("source_id", sa.String(64), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("used_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_credit_records_user_type_expires", "credit_records", ["user_id", "type", "expires_at"])

    op.create_table(
        "credit_usage",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.String(255), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Achievements
    op.create_table(
        "badges",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("icon_url", sa.String(500), nullable=True),
        sa.Column(
            "category",
            sa.Enum("inviter", "achiever", "special", "seasonal", name="badgecategory"),
            nullable=False,
            server_default="inviter",
        ),
        sa.Column(
            "rarity",
            sa.Enum("common", "rare", "epic", "legendary", name="badgerarity"),
            nullable=False,
            server_default="common",
        ),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "user_badges",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("badge_id", sa.String(100), sa.ForeignKey("badges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("earned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("is_displayed", sa.Boolean(), nullable=False, server_default="false"),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    op.create_table(
        "titles",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("color", sa.String(20), nullable=False, server_default="#6366f1"),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "user_titles",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("title_id", sa.String(100), sa.ForeignKey("titles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("earned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="false"),
        sa.UniqueConstraint("user_id", "title_id", name="uq_user_titles_user_title"),
    )

    # Notifications
    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("type", notification_type, nullable=False),
        sa.Column(
            "channel",
            sa.Enum("in_app", "email", name="notificationchannel"),
            nullable=False,
            server_default="in_app",
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "sent", "failed", "read", name="notificationstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read_at"])

    op.create_table(
        "notification_preferences",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), _user_fk(), nullable=False, index=True),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("in_app_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "type", name="uq_notification_preferences_user_type"),
    )


def downgrade() -> None:
    for table in (
        "notification_preferences",
        "notifications",
        "user_titles",
        "titles",
        "user_badges",
        "badges",
        "credit_usage",
        "credit_records",
        "milestone_markers",
        "reward_records",
        "reward_configs",
        "account_freezes",
        "review_cases",
        "anomaly_alerts",
        "user_bans",
        "user_risk_profiles",
        "suspicious_activities",
        "device_fingerprints",
        "invite_stats",
        "invite_events",
        "invite_registrations",
        "invite_codes",
        "system_settings",
        "refresh_tokens",
        "users",
    ):
        op.drop_table(table)

    for enum_name in ENUM_TYPES:
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
