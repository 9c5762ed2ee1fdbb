"""initial scheduling schema

Revision ID: c4e1a9b27d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'c4e1a9b27d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    booking_status = postgresql.ENUM(
        'booked', 'cancelled', 'finished',
        name='booking_status',
        create_type=False
    )
    booking_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'businesses',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_businesses_owner_id', 'businesses', ['owner_id'])

    op.create_table(
        'resources',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('principal_id', sa.UUID(), nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='RESTRICT'),
    )
    op.create_index('ix_resources_business_id', 'resources', ['business_id'])
    op.create_index('ix_resources_principal_id', 'resources', ['principal_id'])

    op.create_table(
        'working_hours',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('resource_id', sa.UUID(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('open_time', sa.TIME(), nullable=True),
        sa.Column('close_time', sa.TIME(), nullable=True),
        sa.Column('is_day_off', sa.Boolean(), nullable=False, server_default='false'),

        # Constraints
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='valid_working_day_of_week'),
        sa.CheckConstraint(
            'is_day_off OR (open_time IS NOT NULL AND close_time IS NOT NULL AND open_time < close_time)',
            name='check_working_hours_open_before_close',
        ),
        sa.UniqueConstraint('resource_id', 'day_of_week', name='unique_working_hours_resource_day'),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
    )

    op.create_table(
        'time_off_blocks',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('resource_id', sa.UUID(), nullable=False),
        sa.Column('date', sa.DATE(), nullable=False),
        sa.Column('start_time', sa.TIME(), nullable=False),
        sa.Column('end_time', sa.TIME(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('end_time > start_time', name='check_time_off_end_after_start'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_time_off_resource_date', 'time_off_blocks', ['resource_id', 'date'])

    op.create_table(
        'vacations',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('resource_id', sa.UUID(), nullable=False),
        sa.Column('start_date', sa.DATE(), nullable=False),
        sa.Column('end_date', sa.DATE(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('end_date >= start_date', name='check_vacation_end_not_before_start'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_vacations_resource_range', 'vacations', ['resource_id', 'start_date', 'end_date'])

    op.create_table(
        'business_holidays',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('date', sa.DATE(), nullable=False),
        sa.Column('reason', sa.String(200), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'date', name='unique_business_holiday_date'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
    )

    op.create_table(
        'services',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.CheckConstraint('duration_minutes > 0', name='check_service_duration_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_services_business_id', 'services', ['business_id'])

    op.create_table(
        'service_addons',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('duration_minutes >= 0', name='check_addon_duration_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_service_addons_service_id', 'service_addons', ['service_id'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('business_id', sa.UUID(), nullable=False),
        sa.Column('resource_id', sa.UUID(), nullable=False),
        sa.Column('service_id', sa.UUID(), nullable=False),
        sa.Column('requester_id', sa.UUID(), nullable=False),
        sa.Column('addon_ids', postgresql.ARRAY(sa.UUID()), nullable=False, server_default='{}'),
        sa.Column('date', sa.DATE(), nullable=False),
        sa.Column('start_time', sa.TIME(), nullable=False),
        sa.Column('end_time', sa.TIME(), nullable=False),
        sa.Column('status', postgresql.ENUM('booked', 'cancelled', 'finished', name='booking_status', create_type=False), nullable=False, server_default='booked'),
        sa.Column('previous_date', sa.DATE(), nullable=True),
        sa.Column('previous_start_time', sa.TIME(), nullable=True),
        sa.Column('previous_end_time', sa.TIME(), nullable=True),
        sa.Column('changed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.CheckConstraint('end_time > start_time', name='check_booking_end_after_start'),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id'], ondelete='RESTRICT'),
    )
    op.create_index('ix_bookings_business_id', 'bookings', ['business_id'])
    op.create_index('ix_bookings_requester_id', 'bookings', ['requester_id'])
    op.create_index(
        'idx_bookings_resource_date_status',
        'bookings',
        ['resource_id', 'date', 'status']
    )


def downgrade() -> None:
    op.drop_index('idx_bookings_resource_date_status', table_name='bookings')
    op.drop_index('ix_bookings_requester_id', table_name='bookings')
    op.drop_index('ix_bookings_business_id', table_name='bookings')
    op.drop_table('bookings')

    op.drop_index('ix_service_addons_service_id', table_name='service_addons')
    op.drop_table('service_addons')
    op.drop_index('ix_services_business_id', table_name='services')
    op.drop_table('services')

    op.drop_table('business_holidays')
    op.drop_index('idx_vacations_resource_range', table_name='vacations')
    op.drop_table('vacations')
    op.drop_index('idx_time_off_resource_date', table_name='time_off_blocks')
    op.drop_table('time_off_blocks')
    op.drop_table('working_hours')

    op.drop_index('ix_resources_principal_id', table_name='resources')
    op.drop_index('ix_resources_business_id', table_name='resources')
    op.drop_table('resources')
    op.drop_index('ix_businesses_owner_id', table_name='businesses')
    op.drop_table('businesses')

    op.execute('DROP TYPE IF EXISTS booking_status')
