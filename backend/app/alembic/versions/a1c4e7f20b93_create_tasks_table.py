"""create_tasks_table

Revision ID: a1c4e7f20b93
Revises:
Create Date: 2026-10-19 12:00:00.000000

Local copy of OpenProject work packages (and locally created tasks).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'a1c4e7f20b93'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('project', sa.String(255), nullable=True),
        sa.Column('project_id', sa.String(50), nullable=True),
        sa.Column('status', sa.String(100), nullable=True),
        sa.Column('assignee', sa.String(255), nullable=True),
        sa.Column('responsible', sa.String(255), nullable=True),
        sa.Column('priority', sa.String(100), nullable=True),
        sa.Column('estimated_hours', sa.Numeric(8, 2), nullable=True),
        sa.Column('spent_hours', sa.Numeric(8, 2), nullable=True),
        sa.Column('related_to', sa.Text(), nullable=True),
        sa.Column('op_created_at', sa.DateTime(), nullable=True),
        sa.Column('op_updated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tasks')),
    )
    op.create_index('ix_tasks_external_id', 'tasks', ['external_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_project', 'tasks', ['project'])
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_assignee', 'tasks', ['assignee'])
    op.create_index('ix_tasks_op_updated_at', 'tasks', ['op_updated_at'])
    op.create_index('ix_tasks_priority', 'tasks', ['priority'])


def downgrade() -> None:
    for name in (
        'ix_tasks_priority', 'ix_tasks_op_updated_at', 'ix_tasks_assignee',
        'ix_tasks_project_id', 'ix_tasks_project', 'ix_tasks_status',
        'ix_tasks_external_id',
    ):
        op.drop_index(name, table_name='tasks')
    op.drop_table('tasks')
