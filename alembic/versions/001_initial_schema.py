"""Initial schema with the deployment saga table.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'smart_contract_deployments',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('request_id', sa.String(255), nullable=True),
        sa.Column('auth_token', sa.Text(), nullable=True),
        sa.Column('contract_name', sa.String(255), nullable=False),
        sa.Column('contract_bytecode', sa.Text(), nullable=False),
        sa.Column('constructor_args', sa.Text(), nullable=True),
        sa.Column('network', sa.String(50), nullable=True),
        sa.Column('requester_id', sa.String(255), nullable=True),
        sa.Column('hash_value', sa.Text(), nullable=True),
        sa.Column('signed_hash', sa.Text(), nullable=True),
        sa.Column('transaction_hash', sa.String(255), nullable=True),
        sa.Column('contract_address', sa.String(255), nullable=True),
        sa.Column('whitelist_id', sa.String(255), nullable=True),
        sa.Column('whitelist_hash', sa.Text(), nullable=True),
        sa.Column('signed_whitelist_hash', sa.Text(), nullable=True),
        sa.Column('current_state', sa.String(40), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_smart_contract_deployments_request_id',
        'smart_contract_deployments',
        ['request_id'],
        unique=True,
    )
    op.create_index('ix_deployments_state', 'smart_contract_deployments', ['current_state'])


def downgrade() -> None:
    op.drop_index('ix_deployments_state', table_name='smart_contract_deployments')
    op.drop_index('ix_smart_contract_deployments_request_id', table_name='smart_contract_deployments')
    op.drop_table('smart_contract_deployments')
