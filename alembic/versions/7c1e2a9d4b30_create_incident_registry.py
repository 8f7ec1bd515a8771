"""create incident registry tables (organizations, incidents, incident_versions, audit_logs)

Revision ID: 7c1e2a9d4b30
Revises:
Create Date: 2026-10-17 09:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "7c1e2a9d4b30"
down_revision = None
branch_labels = None
depends_on = None


def _insp():
    bind = op.get_bind()
    return sa.inspect(bind)


def _has_table(name: str) -> bool:
    return name in _insp().get_table_names()


def _has_index(table: str, idx_name: str) -> bool:
    if not _has_table(table):
        return False
    return idx_name in [i.get("name") for i in _insp().get_indexes(table)]


def upgrade():
    # --- organizations (tenant row; may already exist in the host application) ---
    if not _has_table("organizations"):
        op.create_table(
            "organizations",
            sa.Column("id", sa.String(length=64), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=255), nullable=True),
            sa.Column("last_incident_internal_id", sa.Integer, nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
    if not _has_index("organizations", "ix_organizations_slug"):
        op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    # --- incidents (head rows) ---
    if not _has_table("incidents"):
        op.create_table(
            "incidents",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column("internal_id", sa.Integer, nullable=False),
            sa.Column("current_version_number", sa.Integer, nullable=False, server_default=sa.text("1")),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("organization_id", "internal_id", name="uq_incidents_org_internal_id"),
        )
    for name, cols in (
        ("ix_incidents_organization_id", ["organization_id"]),
        ("ix_incidents_status", ["status"]),
        ("ix_incidents_updated_at", ["updated_at"]),
        ("ix_incidents_org_updated", ["organization_id", "updated_at"]),
    ):
        if not _has_index("incidents", name):
            op.create_index(name, "incidents", cols)

    # --- incident_versions (append-only snapshots) ---
    if not _has_table("incident_versions"):
        op.create_table(
            "incident_versions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("incident_id", sa.String(length=36), nullable=False),
            sa.Column("version_number", sa.Integer, nullable=False),
            sa.Column("detected_at", sa.DateTime, nullable=False),
            sa.Column("detection_timezone", sa.String(length=64), nullable=True),
            sa.Column("description", sa.Text, nullable=False),
            sa.Column("incident_type", sa.String(length=50), nullable=True),
            sa.Column("data_categories", sa.JSON, nullable=False),
            sa.Column("affected_subjects_count", sa.Integer, nullable=True),
            sa.Column("affected_records_count", sa.Integer, nullable=True),
            sa.Column("consequences", sa.Text, nullable=True),
            sa.Column("probable_risks", sa.Text, nullable=True),
            sa.Column("measures_taken", sa.Text, nullable=True),
            sa.Column("measures_planned", sa.Text, nullable=True),
            sa.Column("authority_notified", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("authority_notified_at", sa.DateTime, nullable=True),
            sa.Column("delay_justification", sa.Text, nullable=True),
            sa.Column("subjects_notified", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("subjects_notified_at", sa.DateTime, nullable=True),
            sa.Column("resolved_at", sa.DateTime, nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("contact_name", sa.String(length=100), nullable=True),
            sa.Column("contact_email", sa.String(length=100), nullable=True),
            sa.Column("contact_phone", sa.String(length=20), nullable=True),
            sa.Column("internal_notes", sa.Text, nullable=True),
            sa.Column("is_late", sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column("token", sa.String(length=64), nullable=False),
            sa.Column("token_nonce", sa.Integer, nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.DateTime, nullable=False),
            sa.Column("created_by", sa.String(length=64), nullable=False),
            sa.ForeignKeyConstraint(["incident_id"], ["incidents.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("incident_id", "version_number", name="uq_incident_versions_number"),
            sa.UniqueConstraint("token", name="uq_incident_versions_token"),
        )
    for name, cols in (
        ("ix_incident_versions_incident_id", ["incident_id"]),
        ("ix_incident_versions_created", ["incident_id", "created_at"]),
    ):
        if not _has_index("incident_versions", name):
            op.create_index(name, "incident_versions", cols)

    # --- audit_logs ---
    if not _has_table("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("user_id", sa.String(length=64), nullable=True),
            sa.Column("action", sa.String(length=64), nullable=False),
            sa.Column("entity_type", sa.String(length=32), nullable=True),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("meta", sa.Text, nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        )
    for name, cols in (
        ("ix_audit_logs_organization_id", ["organization_id"]),
        ("ix_audit_logs_action", ["action"]),
    ):
        if not _has_index("audit_logs", name):
            op.create_index(name, "audit_logs", cols)


def downgrade():
    if _has_table("audit_logs"):
        op.drop_table("audit_logs")
    if _has_table("incident_versions"):
        op.drop_table("incident_versions")
    if _has_table("incidents"):
        op.drop_table("incidents")
    # organizations is left in place: it belongs to the host application
