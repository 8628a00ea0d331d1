"""create game_result table

Revision ID: 4c7d2e91a0b3
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d2e91a0b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'game_result' in insp.get_table_names():
        return
    op.create_table(
        'game_result',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.String(length=36), nullable=False),
        sa.Column('pin', sa.String(length=12), nullable=False),
        sa.Column('quiz_title', sa.String(length=255), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('player_count', sa.Integer(), nullable=False),
        sa.Column('question_count', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.String(length=40), nullable=True),
        sa.Column('ended_at', sa.String(length=40), nullable=True),
        sa.Column('participants', sa.Text(), nullable=False),
        sa.Column('question_stats', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('game_result') as batch_op:
        batch_op.create_index(batch_op.f('ix_game_result_game_id'), ['game_id'], unique=True)


def downgrade():
    with op.batch_alter_table('game_result') as batch_op:
        batch_op.drop_index(batch_op.f('ix_game_result_game_id'))
    op.drop_table('game_result')
