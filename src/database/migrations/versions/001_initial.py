"""
Initial migration - Create all tables

Revision ID: 001_initial
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables."""

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(120), nullable=False, unique=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='citizen'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_reports', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_reports', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.CheckConstraint('points >= 0', name='check_user_points_non_negative'),
    )

    op.create_index('idx_user_role_active', 'users', ['role', 'is_active'])

    # Create reports table
    op.create_table(
        'reports',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('report_id', sa.String(20), unique=True),
        sa.Column('citizen_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(100)),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('waste_type', sa.String(30), nullable=False, server_default='unknown'),
        sa.Column('priority', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('address', sa.String(300)),
        sa.Column('landmark', sa.String(200)),
        sa.Column('status', sa.String(20), nullable=False, server_default='submitted'),
        sa.Column('verified_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('verified_at', sa.DateTime()),
        sa.Column('verification_notes', sa.Text()),
        sa.Column('assigned_to', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('assigned_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('completion_notes', sa.Text()),
        sa.Column('actual_cleanup_minutes', sa.Integer()),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_awarded_at', sa.DateTime()),
        sa.Column('ml_is_waste', sa.Boolean()),
        sa.Column('ml_waste_type', sa.String(30)),
        sa.Column('ml_confidence', sa.Float()),
        sa.Column('ml_processed_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('points_awarded >= 0', name='check_report_points_non_negative'),
        sa.CheckConstraint('latitude >= -90 AND latitude <= 90', name='check_report_latitude'),
        sa.CheckConstraint('longitude >= -180 AND longitude <= 180', name='check_report_longitude'),
    )

    op.create_index('idx_report_citizen_created', 'reports', ['citizen_id', 'created_at'])
    op.create_index('idx_report_status_created', 'reports', ['status', 'created_at'])
    op.create_index('idx_report_assigned_status', 'reports', ['assigned_to', 'status'])
    op.create_index('idx_report_lat_lng', 'reports', ['latitude', 'longitude'])
    op.create_index('ix_reports_created_at', 'reports', ['created_at'])

    # Create report_status_history table
    op.create_table(
        'report_status_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('changed_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.UniqueConstraint('report_id', 'sequence', name='uq_history_report_sequence'),
    )

    # Create report_images table
    op.create_table(
        'report_images',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('report_id', sa.Integer(), sa.ForeignKey('reports.id'), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('url', sa.String(500), nullable=False),
        sa.Column('uploaded_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('report_id', 'kind', name='uq_report_image_kind'),
    )

    # Create rewards table
    op.create_table(
        'rewards',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('reward_type', sa.String(20), nullable=False, server_default='coupon'),
        sa.Column('partner_name', sa.String(100)),
        sa.Column('terms', sa.Text()),
        sa.Column('points_cost', sa.Integer(), nullable=False),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.CheckConstraint('points_cost >= 1', name='check_reward_points_cost'),
        sa.CheckConstraint('total_quantity >= 1', name='check_reward_total_quantity'),
        sa.CheckConstraint(
            'remaining_quantity >= 0 AND remaining_quantity <= total_quantity',
            name='check_reward_remaining_quantity',
        ),
    )

    op.create_index('idx_reward_active_validity', 'rewards', ['is_active', 'valid_from', 'valid_until'])
    op.create_index('idx_reward_points_cost', 'rewards', ['points_cost'])

    # Create redemptions table
    op.create_table(
        'redemptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reward_id', sa.Integer(), sa.ForeignKey('rewards.id'), nullable=False),
        sa.Column('points_used', sa.Integer(), nullable=False),
        sa.Column('generated_code', sa.String(32), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('used_at', sa.DateTime()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('redeemed_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )

    op.create_index('idx_redemption_user_redeemed', 'redemptions', ['user_id', 'redeemed_at'])
    op.create_index('idx_redemption_reward', 'redemptions', ['reward_id'])
    op.create_index('idx_redemption_status_expires', 'redemptions', ['status', 'expires_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('redemptions')
    op.drop_table('rewards')
    op.drop_table('report_images')
    op.drop_table('report_status_history')
    op.drop_table('reports')
    op.drop_table('users')
