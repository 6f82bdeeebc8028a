"""create detections

Revision ID: 3c9a51e2d7b4
Revises: 
Create Date: 2026-10-16 10:12:04.118530

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9a51e2d7b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'detections',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.String, nullable=False),
        sa.Column('image_url', sa.Text, nullable=False),
        sa.Column('image_meta', sa.JSON, nullable=True),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('model_name', sa.String, nullable=False, server_default=''),
        sa.Column('completion_id', sa.String, nullable=False, server_default=''),
        sa.Column('result', sa.JSON, nullable=True),
        sa.Column('condition', sa.String, nullable=False, server_default=''),
        sa.Column('confidence', sa.Float, nullable=True),
        sa.Column('advice', sa.Text, nullable=False, server_default=''),
        sa.Column('urgency', sa.String, nullable=False, server_default=''),
        sa.Column('medications', sa.JSON, nullable=True),
        sa.Column('raw', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'ix_detections_user_created', 'detections', ['user_id', 'created_at']
    )


def downgrade() -> None:
    op.drop_index('ix_detections_user_created', table_name='detections')
    op.drop_table('detections')
