"""Create backoffice tables

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-01-12 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'b7c1d2e3f4a5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ISSUE_RESOLUTION = ('OPEN', 'CONTACTED_CUSTOMER', 'SENT_PAY_LINK', 'CANCELED', 'RESOLVED_OTHER')


def upgrade() -> None:
    """Upgrade schema."""
    # members
    op.create_table('members',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('first_name', sa.String(length=120), nullable=True),
        sa.Column('last_name', sa.String(length=120), nullable=True),
        sa.Column('phone', sa.String(length=40), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_members_id'), 'members', ['id'], unique=False)
    op.create_index(op.f('ix_members_email'), 'members', ['email'], unique=True)
    op.create_index(op.f('ix_members_user_id'), 'members', ['user_id'], unique=True)

    # credits_ledger (append-only)
    op.create_table('credits_ledger',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('member_id', sa.UUID(), nullable=False),
        sa.Column('entry_type', sa.Enum('GRANT', 'REDEEM', 'REFUND', name='ledgerentrytype'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.UUID(), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_credits_ledger_quantity_positive'),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credits_ledger_id'), 'credits_ledger', ['id'], unique=False)
    op.create_index(op.f('ix_credits_ledger_member_id'), 'credits_ledger', ['member_id'], unique=False)
    op.create_index('ix_credits_ledger_member_created', 'credits_ledger', ['member_id', 'created_at'], unique=False)

    # processed_events
    op.create_table('processed_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_processed_events_id'), 'processed_events', ['id'], unique=False)
    op.create_index(op.f('ix_processed_events_event_id'), 'processed_events', ['event_id'], unique=True)

    # booking_passes
    op.create_table('booking_passes',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('member_id', sa.UUID(), nullable=True),
        sa.Column('stripe_session_id', sa.String(length=255), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('redeemed_invitee_uri', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_session_id'),
        sa.UniqueConstraint('redeemed_invitee_uri')
    )
    op.create_index(op.f('ix_booking_passes_id'), 'booking_passes', ['id'], unique=False)
    op.create_index(op.f('ix_booking_passes_token_hash'), 'booking_passes', ['token_hash'], unique=True)
    op.create_index(op.f('ix_booking_passes_email'), 'booking_passes', ['email'], unique=False)
    op.create_index(op.f('ix_booking_passes_member_id'), 'booking_passes', ['member_id'], unique=False)
    # at most one unused pass per email
    op.create_index(
        'uq_booking_passes_email_unused', 'booking_passes', ['email'], unique=True,
        postgresql_where=sa.text('used_at IS NULL')
    )

    # bookings
    op.create_table('bookings',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('invitee_uri', sa.String(length=500), nullable=False),
        sa.Column('event_uri', sa.String(length=500), nullable=True),
        sa.Column('invitee_email', sa.String(length=320), nullable=False),
        sa.Column('invitee_name', sa.String(length=255), nullable=True),
        sa.Column('purchaser_email', sa.String(length=320), nullable=False),
        sa.Column('member_id', sa.UUID(), nullable=True),
        sa.Column('booking_pass_id', sa.UUID(), nullable=True),
        sa.Column('event_start_at', sa.DateTime(), nullable=True),
        sa.Column('event_end_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.Enum('BOOKED', 'CANCELED', name='bookingstatus'), nullable=False),
        sa.Column('redeem_entry_id', sa.UUID(), nullable=True),
        sa.Column('refund_entry_id', sa.UUID(), nullable=True),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.ForeignKeyConstraint(['booking_pass_id'], ['booking_passes.id']),
        sa.ForeignKeyConstraint(['redeem_entry_id'], ['credits_ledger.id']),
        sa.ForeignKeyConstraint(['refund_entry_id'], ['credits_ledger.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_id'), 'bookings', ['id'], unique=False)
    op.create_index(op.f('ix_bookings_invitee_uri'), 'bookings', ['invitee_uri'], unique=True)
    op.create_index(op.f('ix_bookings_invitee_email'), 'bookings', ['invitee_email'], unique=False)
    op.create_index(op.f('ix_bookings_purchaser_email'), 'bookings', ['purchaser_email'], unique=False)
    op.create_index(op.f('ix_bookings_member_id'), 'bookings', ['member_id'], unique=False)
    op.create_index(
        'uq_bookings_booking_pass_id', 'bookings', ['booking_pass_id'], unique=True,
        postgresql_where=sa.text('booking_pass_id IS NOT NULL')
    )

    # calendly_booking_issues + history
    op.create_table('calendly_booking_issues',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('invitee_uri', sa.String(length=500), nullable=False),
        sa.Column('event_uri', sa.String(length=500), nullable=True),
        sa.Column('invitee_email', sa.String(length=320), nullable=True),
        sa.Column('invitee_name', sa.String(length=255), nullable=True),
        sa.Column('member_id', sa.UUID(), nullable=True),
        sa.Column('event_start_at', sa.DateTime(), nullable=True),
        sa.Column('event_end_at', sa.DateTime(), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('resolution_status', sa.Enum(*ISSUE_RESOLUTION, name='issueresolution'), nullable=False),
        sa.Column('resolution_note', sa.Text(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_calendly_booking_issues_id'), 'calendly_booking_issues', ['id'], unique=False)
    op.create_index(op.f('ix_calendly_booking_issues_invitee_uri'), 'calendly_booking_issues', ['invitee_uri'], unique=True)
    op.create_index(op.f('ix_calendly_booking_issues_invitee_email'), 'calendly_booking_issues', ['invitee_email'], unique=False)
    op.create_index(op.f('ix_calendly_booking_issues_member_id'), 'calendly_booking_issues', ['member_id'], unique=False)
    op.create_index(op.f('ix_calendly_booking_issues_resolution_status'), 'calendly_booking_issues', ['resolution_status'], unique=False)

    op.create_table('calendly_booking_issue_history',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('issue_id', sa.UUID(), nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('changed_by', sa.UUID(), nullable=True),
        sa.Column('old_status', postgresql.ENUM(*ISSUE_RESOLUTION, name='issueresolution', create_type=False), nullable=True),
        sa.Column('new_status', postgresql.ENUM(*ISSUE_RESOLUTION, name='issueresolution', create_type=False), nullable=False),
        sa.Column('old_note', sa.Text(), nullable=True),
        sa.Column('new_note', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['issue_id'], ['calendly_booking_issues.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_calendly_booking_issue_history_id'), 'calendly_booking_issue_history', ['id'], unique=False)
    op.create_index(op.f('ix_calendly_booking_issue_history_issue_id'), 'calendly_booking_issue_history', ['issue_id'], unique=False)

    # waivers
    op.create_table('waivers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('member_id', sa.UUID(), nullable=True),
        sa.Column('recipient_email', sa.String(length=320), nullable=False),
        sa.Column('recipient_name', sa.String(length=255), nullable=True),
        sa.Column('attendee_name', sa.String(length=255), nullable=True),
        sa.Column('waiver_year', sa.Integer(), nullable=False),
        sa.Column('calendly_invitee_uri', sa.String(length=500), nullable=True),
        sa.Column('status', sa.Enum('SENT', 'SIGNED', name='waiverstatus'), nullable=False),
        sa.Column('external_provider', sa.String(length=50), nullable=False),
        sa.Column('external_document_id', sa.String(length=255), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('signed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('calendly_invitee_uri')
    )
    op.create_index(op.f('ix_waivers_id'), 'waivers', ['id'], unique=False)
    op.create_index(op.f('ix_waivers_member_id'), 'waivers', ['member_id'], unique=False)
    op.create_index(op.f('ix_waivers_recipient_email'), 'waivers', ['recipient_email'], unique=False)
    op.create_index(op.f('ix_waivers_status'), 'waivers', ['status'], unique=False)
    op.create_index(op.f('ix_waivers_external_document_id'), 'waivers', ['external_document_id'], unique=False)
    # one annual waiver per recipient and year; per-attendee waivers are keyed by invitee uri
    op.create_index(
        'uq_waivers_recipient_year', 'waivers', ['recipient_email', 'waiver_year'], unique=True,
        postgresql_where=sa.text('calendly_invitee_uri IS NULL')
    )

    op.create_table('waiver_sync_runs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('waiver_year', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.Enum('RUNNING', 'COMPLETED', 'COMPLETED_WITH_ERRORS', 'FAILED', name='waiversyncstatus'), nullable=False),
        sa.Column('scanned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('already_signed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_waiver_sync_runs_id'), 'waiver_sync_runs', ['id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_waiver_sync_runs_id'), table_name='waiver_sync_runs')
    op.drop_table('waiver_sync_runs')

    op.drop_index('uq_waivers_recipient_year', table_name='waivers')
    op.drop_index(op.f('ix_waivers_external_document_id'), table_name='waivers')
    op.drop_index(op.f('ix_waivers_status'), table_name='waivers')
    op.drop_index(op.f('ix_waivers_recipient_email'), table_name='waivers')
    op.drop_index(op.f('ix_waivers_member_id'), table_name='waivers')
    op.drop_index(op.f('ix_waivers_id'), table_name='waivers')
    op.drop_table('waivers')

    op.drop_index(op.f('ix_calendly_booking_issue_history_issue_id'), table_name='calendly_booking_issue_history')
    op.drop_index(op.f('ix_calendly_booking_issue_history_id'), table_name='calendly_booking_issue_history')
    op.drop_table('calendly_booking_issue_history')

    op.drop_index(op.f('ix_calendly_booking_issues_resolution_status'), table_name='calendly_booking_issues')
    op.drop_index(op.f('ix_calendly_booking_issues_member_id'), table_name='calendly_booking_issues')
    op.drop_index(op.f('ix_calendly_booking_issues_invitee_email'), table_name='calendly_booking_issues')
    op.drop_index(op.f('ix_calendly_booking_issues_invitee_uri'), table_name='calendly_booking_issues')
    op.drop_index(op.f('ix_calendly_booking_issues_id'), table_name='calendly_booking_issues')
    op.drop_table('calendly_booking_issues')

    op.drop_index('uq_bookings_booking_pass_id', table_name='bookings')
    op.drop_index(op.f('ix_bookings_member_id'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_purchaser_email'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_invitee_email'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_invitee_uri'), table_name='bookings')
    op.drop_index(op.f('ix_bookings_id'), table_name='bookings')
    op.drop_table('bookings')

    op.drop_index('uq_booking_passes_email_unused', table_name='booking_passes')
    op.drop_index(op.f('ix_booking_passes_member_id'), table_name='booking_passes')
    op.drop_index(op.f('ix_booking_passes_email'), table_name='booking_passes')
    op.drop_index(op.f('ix_booking_passes_token_hash'), table_name='booking_passes')
    op.drop_index(op.f('ix_booking_passes_id'), table_name='booking_passes')
    op.drop_table('booking_passes')

    op.drop_index(op.f('ix_processed_events_event_id'), table_name='processed_events')
    op.drop_index(op.f('ix_processed_events_id'), table_name='processed_events')
    op.drop_table('processed_events')

    op.drop_index('ix_credits_ledger_member_created', table_name='credits_ledger')
    op.drop_index(op.f('ix_credits_ledger_member_id'), table_name='credits_ledger')
    op.drop_index(op.f('ix_credits_ledger_id'), table_name='credits_ledger')
    op.drop_table('credits_ledger')

    op.drop_index(op.f('ix_members_user_id'), table_name='members')
    op.drop_index(op.f('ix_members_email'), table_name='members')
    op.drop_index(op.f('ix_members_id'), table_name='members')
    op.drop_table('members')

    for enum_name in ('waiversyncstatus', 'waiverstatus', 'issueresolution', 'bookingstatus', 'ledgerentrytype'):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
