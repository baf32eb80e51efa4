"""initial schema: users, groups, persons, milestones, progress, attendance, audit

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

from PACE.db.base import GUID, JSONB

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE = sa.text("deleted_at IS NULL")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('full_name', sa.String(200)),
        sa.Column('phone_number', sa.String(32)),
        sa.Column('role', sa.String(32), nullable=False, server_default=sa.text("'leader'")),
        sa.Column('group_id', GUID(), nullable=True),
        sa.Column('group_name', sa.String(100)),
        *_timestamps(),
        sa.UniqueConstraint('username', name='uq_users_username'),
    )
    op.create_index('ix_users_group_id', 'users', ['group_id'])

    op.create_table(
        'groups',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('leader_id', GUID(), sa.ForeignKey('users.id', ondelete='SET NULL', name='fk_groups_leader_id_users')),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index('ix_groups_year', 'groups', ['year'])
    op.create_index(
        'uq_groups_name_year_live', 'groups', ['name', 'year'], unique=True,
        postgresql_where=LIVE, sqlite_where=LIVE,
    )
    # users <-> groups is circular; add the second edge once both exist
    with op.batch_alter_table('users') as batch:
        batch.create_foreign_key('fk_users_group_id_groups', 'groups', ['group_id'], ['id'], ondelete='SET NULL')

    op.create_table(
        'persons',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('phone_number', sa.String(32), nullable=False),
        sa.Column('date_of_birth', sa.String(10)),
        sa.Column('gender', sa.String(16)),
        sa.Column('residential_location', sa.String(200)),
        sa.Column('school_residential_location', sa.String(200)),
        sa.Column('occupation_type', sa.String(32)),
        sa.Column('group_id', GUID(), sa.ForeignKey('groups.id', ondelete='RESTRICT', name='fk_persons_group_id_groups')),
        sa.Column('group_name', sa.String(100)),
        sa.Column('registered_by', GUID(), sa.ForeignKey('users.id', ondelete='SET NULL', name='fk_persons_registered_by_users')),
        *_timestamps(),
        sa.UniqueConstraint('phone_number', name='uq_persons_phone_number'),
    )
    op.create_index('ix_persons_group_id', 'persons', ['group_id'])

    op.create_table(
        'milestones',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('stage_number', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('short_name', sa.String(50)),
        sa.Column('description', sa.Text()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_derived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index(
        'uq_milestones_stage_number_live', 'milestones', ['stage_number'], unique=True,
        postgresql_where=LIVE, sqlite_where=LIVE,
    )
    op.create_index(
        'uq_milestones_single_auto_derived', 'milestones', ['auto_derived'], unique=True,
        postgresql_where=sa.text("auto_derived AND deleted_at IS NULL"),
        sqlite_where=sa.text("auto_derived = 1 AND deleted_at IS NULL"),
    )

    op.create_table(
        'progress_records',
        sa.Column('person_id', GUID(), sa.ForeignKey('persons.id', ondelete='CASCADE', name='fk_progress_records_person_id_persons'), nullable=False),
        sa.Column('stage_number', sa.Integer(), nullable=False),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('date_completed', sa.Date()),
        sa.Column('updated_by', GUID()),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('person_id', 'stage_number', name='pk_progress_records'),
    )
    op.create_index('ix_progress_records_stage_completed', 'progress_records', ['stage_number', 'is_completed'])

    op.create_table(
        'attendance_records',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('person_id', GUID(), sa.ForeignKey('persons.id', ondelete='CASCADE', name='fk_attendance_records_person_id_persons'), nullable=False),
        sa.Column('date_attended', sa.Date(), nullable=False),
        sa.Column('recorded_by', GUID()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('person_id', 'date_attended', name='uq_attendance_records_person_date'),
    )
    op.create_index('ix_attendance_records_person_id', 'attendance_records', ['person_id'])

    op.create_table(
        'activity_logs',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('user_id', GUID()),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('entity_type', sa.String(64)),
        sa.Column('entity_id', sa.String(64)),
        sa.Column('old_values', JSONB()),
        sa.Column('new_values', JSONB()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_activity_logs_user_id', 'activity_logs', ['user_id'])
    op.create_index('ix_activity_logs_action', 'activity_logs', ['action'])


def downgrade() -> None:
    op.drop_table('activity_logs')
    op.drop_table('attendance_records')
    op.drop_table('progress_records')
    op.drop_table('milestones')
    op.drop_table('persons')
    with op.batch_alter_table('users') as batch:
        batch.drop_constraint('fk_users_group_id_groups', type_='foreignkey')
    op.drop_table('groups')
    op.drop_table('users')
