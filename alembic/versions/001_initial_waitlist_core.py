"""users, events, bookings, waitlist entries and notifications

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

user_role = sa.Enum('USER', 'HOST', 'ADMIN', name='userrole')
event_status = sa.Enum('ACTIVE', 'CANCELLED', name='eventstatus')
booking_status = sa.Enum('JOINED', 'CANCELLED', name='bookingstatus')
payment_status = sa.Enum(
    'NONE', 'PAID', 'REFUND_PENDING', 'REFUNDED', 'REFUND_FAILED', name='paymentstatus'
)
waitlist_status = sa.Enum(
    'WAITING', 'NOTIFIED', 'CONVERTED', 'EXPIRED', 'CANCELLED', name='waitliststatus'
)
notice_kind = sa.Enum(
    'SPOT_OPENED',
    'WAITLISTED',
    'LEFT_WAITLIST',
    'OFFER_EXPIRED',
    'BOOKING_CONFIRMED',
    'EVENT_CANCELLED',
    'WAITLIST_MILESTONE',
    name='noticekind',
)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=128), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', user_role, nullable=False, server_default='USER'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('idx_user_active_role', 'users', ['is_active', 'role'])

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('host_id', sa.String(length=128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=200), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='usd'),
        sa.Column('status', event_status, nullable=False, server_default='ACTIVE'),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('waitlist_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('waitlist_limit', sa.Integer(), nullable=True),
        sa.Column('notification_window_hours', sa.Integer(), nullable=True),
        sa.Column('urgency_threshold', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('capacity IS NULL OR capacity >= 0', name='ck_event_capacity_non_negative'),
    )
    op.create_index('ix_events_id', 'events', ['id'])
    op.create_index('ix_events_host_id', 'events', ['host_id'])
    op.create_index('ix_events_start_time', 'events', ['start_time'])
    op.create_index('ix_events_status', 'events', ['status'])
    op.create_index('idx_event_host_status', 'events', ['host_id', 'status'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('status', booking_status, nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('amount_paid', sa.Numeric(10, 2), nullable=True),
        sa.Column('payment_status', payment_status, nullable=False, server_default='NONE'),
        sa.Column('refund_id', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'event_id', name='uq_booking_user_event'),
    )
    op.create_index('ix_bookings_id', 'bookings', ['id'])
    op.create_index('ix_bookings_user_id', 'bookings', ['user_id'])
    op.create_index('ix_bookings_event_id', 'bookings', ['event_id'])
    op.create_index('idx_booking_event_status', 'bookings', ['event_id', 'status'])
    op.create_index('idx_booking_user_status', 'bookings', ['user_id', 'status'])

    op.create_table(
        'waitlist_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id'), nullable=False),
        sa.Column('status', waitlist_status, nullable=False),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'event_id', name='uq_waitlist_user_event'),
    )
    op.create_index('ix_waitlist_entries_id', 'waitlist_entries', ['id'])
    op.create_index('ix_waitlist_entries_user_id', 'waitlist_entries', ['user_id'])
    op.create_index('ix_waitlist_entries_event_id', 'waitlist_entries', ['event_id'])
    op.create_index('ix_waitlist_entries_expires_at', 'waitlist_entries', ['expires_at'])
    op.create_index(
        'idx_waitlist_event_status_order',
        'waitlist_entries',
        ['event_id', 'status', 'enqueued_at', 'id'],
    )
    op.create_index('idx_waitlist_status_expires', 'waitlist_entries', ['status', 'expires_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(length=128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id'), nullable=True),
        sa.Column('kind', notice_kind, nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.Text(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_kind', 'notifications', ['kind'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'is_read'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('waitlist_entries')
    op.drop_table('bookings')
    op.drop_table('events')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (
        notice_kind,
        waitlist_status,
        payment_status,
        booking_status,
        event_status,
        user_role,
    ):
        enum_type.drop(bind, checkfirst=True)
