"""Initial schema: tenants, users, business tables and the deletion pipeline

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates:
- tenants, users (user directory for root-role checks)
- tenant-scoped business tables covered by the deletion manifest
- legal_holds
- tenant_deletion_queue, deletion_approvals, deletion_audit_trail, tenant_deletion_log
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_DELETION_STATUSES = "('approved', 'pending_approval', 'queued', 'running')"


def _tenant_fk() -> sa.Column:
    return sa.Column('tenant_id', sa.Uuid(), sa.ForeignKey('tenants.id'), nullable=False, index=True)


def upgrade() -> None:
    """Upgrade database schema."""

    op.create_table(
        'tenants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='active'),
        sa.Column('webhook_url', sa.Text(), nullable=True),
        sa.Column('settings', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'{}'::jsonb")),
        sa.Column('deletion_requested_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_tenants_status', 'tenants', ['status'])

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='employee'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'departments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'teams',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('department_id', sa.Uuid(), sa.ForeignKey('departments.id'), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('team_id', sa.Uuid(), sa.ForeignKey('teams.id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
    )
    op.create_table(
        'documents',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('uploaded_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('filename', sa.String(length=255), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'document_shares',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('document_id', sa.Uuid(), sa.ForeignKey('documents.id'), nullable=False,
                  index=True),
        sa.Column('shared_with', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('can_edit', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        'surveys',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'survey_responses',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('answers', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_table(
        'calendar_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'legal_holds',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )

    # Deletion pipeline; these tables are never touched by the deletion plan
    op.create_table(
        'tenant_deletion_queue',
        sa.Column('id', sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='queued'),
        sa.Column('previous_tenant_status', sa.String(length=32), nullable=True),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_step_name', sa.String(length=128), nullable=True),
        sa.Column('total_steps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stop_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('stop_requested_by', sa.Uuid(), nullable=True),
        sa.Column('stop_requested_at', sa.DateTime(), nullable=True),
        sa.Column('owner_token', sa.String(length=128), nullable=True),
        sa.Column('heartbeat_at', sa.DateTime(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('progress BETWEEN 0 AND 100', name='ck_tenant_deletion_queue_progress'),
    )
    op.create_index(
        'uq_tenant_deletion_queue_active_tenant',
        'tenant_deletion_queue',
        ['tenant_id'],
        unique=True,
        postgresql_where=sa.text(f"status IN {ACTIVE_DELETION_STATUSES}"),
    )
    op.create_index(
        'ix_tenant_deletion_queue_status_created',
        'tenant_deletion_queue',
        ['status', 'created_at'],
    )

    op.create_table(
        'deletion_approvals',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('queue_id', sa.Uuid(), sa.ForeignKey('tenant_deletion_queue.id'),
                  nullable=False, unique=True),
        sa.Column('decision', sa.String(length=16), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('decided_by', sa.Uuid(), nullable=False),
        sa.Column('decided_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("decision IN ('approve', 'reject')", name='ck_deletion_approvals_decision'),
    )

    op.create_table(
        'deletion_audit_trail',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('queue_id', sa.Uuid(), sa.ForeignKey('tenant_deletion_queue.id'),
                  nullable=False, index=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('table_name', sa.String(length=128), nullable=False),
        sa.Column('records_deleted', sa.Integer(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('queue_id', 'table_name', name='uq_deletion_audit_trail_queue_table'),
    )

    op.create_table(
        'tenant_deletion_log',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('queue_id', sa.Uuid(), sa.ForeignKey('tenant_deletion_queue.id'),
                  nullable=False, index=True),
        sa.Column('step', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )

    # Audit and log rows are append-only at the database level too.
    op.execute("""
        CREATE OR REPLACE FUNCTION deletion_history_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql
    """)
    for table in ('deletion_audit_trail', 'tenant_deletion_log', 'deletion_approvals'):
        op.execute(f"""
            CREATE TRIGGER {table}_immutable
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION deletion_history_immutable()
        """)


def downgrade() -> None:
    """Downgrade database schema."""
    for table in ('deletion_audit_trail', 'tenant_deletion_log', 'deletion_approvals'):
        op.execute(f"DROP TRIGGER IF EXISTS {table}_immutable ON {table}")
    op.execute("DROP FUNCTION IF EXISTS deletion_history_immutable()")

    op.drop_table('tenant_deletion_log')
    op.drop_table('deletion_audit_trail')
    op.drop_table('deletion_approvals')
    op.drop_index('ix_tenant_deletion_queue_status_created', table_name='tenant_deletion_queue')
    op.drop_index('uq_tenant_deletion_queue_active_tenant', table_name='tenant_deletion_queue')
    op.drop_table('tenant_deletion_queue')
    op.drop_table('legal_holds')
    op.drop_table('calendar_events')
    op.drop_table('survey_responses')
    op.drop_table('surveys')
    op.drop_table('document_shares')
    op.drop_table('documents')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_table('departments')
    op.drop_table('users')
    op.drop_index('ix_tenants_status', table_name='tenants')
    op.drop_table('tenants')
