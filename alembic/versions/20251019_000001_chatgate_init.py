# alembic/versions/20251019_000001_chatgate_init.py
"""chatgate initial tables

Revision ID: 20251019_000001_chatgate_init
Revises:
Create Date: 2025-10-19

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20251019_000001_chatgate_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'threads',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=True),
        sa.Column('title', sa.String(length=256), nullable=True),
        sa.Column('is_live', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('current_stream_id', sa.String(length=64), nullable=True),
        sa.Column('stream_started_at', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_threads_owner_id', 'threads', ['owner_id'])

    op.create_table(
        'messages',
        sa.Column('seq', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('message_id', sa.String(length=64), nullable=False),
        sa.Column('thread_id', sa.String(length=64), sa.ForeignKey('threads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('parts', sa.JSON(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint("role in ('user','assistant','tool')", name='ck_messages_role'),
        sa.UniqueConstraint('thread_id', 'message_id', name='uq_messages_thread_message'),
    )
    op.create_index('ix_messages_thread_id', 'messages', ['thread_id'])
    op.create_index('ix_messages_created_at', 'messages', ['created_at'])

    op.create_table(
        'streams',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('thread_id', sa.String(length=64), sa.ForeignKey('threads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
    )
    op.create_index('ix_streams_thread_id', 'streams', ['thread_id'])

    op.create_table(
        'usage_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('model_id', sa.String(length=128), nullable=False),
        sa.Column('p', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('c', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('r', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('days_since_epoch', sa.Integer(), nullable=False),
        sa.Column('charged', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_usage_events_user_day', 'usage_events', ['user_id', 'days_since_epoch'])

    op.create_table(
        'user_settings',
        sa.Column('user_id', sa.String(length=64), primary_key=True),
        sa.Column('plan', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('search_provider', sa.String(length=32), nullable=False, server_default='tavily'),
        sa.Column('title_generation_model', sa.String(length=128), nullable=True),
        sa.Column('customization', sa.JSON(), nullable=False),
        sa.Column('core_providers', sa.JSON(), nullable=False),
        sa.Column('custom_providers', sa.JSON(), nullable=False),
        sa.Column('custom_models', sa.JSON(), nullable=False),
        sa.Column('general_providers', sa.JSON(), nullable=False),
        sa.Column('mcp_servers', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )

    op.create_table(
        'documents',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('workspace_id', sa.String(length=64), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=256), nullable=False, server_default='Untitled'),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('document_type', sa.String(length=32), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('is_public', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
    )
    op.create_index('ix_documents_workspace_id', 'documents', ['workspace_id'])
    op.create_index('ix_documents_user_id', 'documents', ['user_id'])


def downgrade() -> None:
    op.drop_table('documents')
    op.drop_table('user_settings')
    op.drop_index('ix_usage_events_user_day', table_name='usage_events')
    op.drop_table('usage_events')
    op.drop_table('streams')
    op.drop_table('messages')
    op.drop_table('threads')
