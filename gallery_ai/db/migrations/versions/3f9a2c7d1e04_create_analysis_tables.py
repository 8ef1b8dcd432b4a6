"""create analysis tables

Revision ID: 3f9a2c7d1e04
Revises:
Create Date: 2026-10-19 10:12:41.208113

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '3f9a2c7d1e04'
down_revision = None
branch_labels = None
depends_on = None

analysis_status = sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='analysisstatus')


def upgrade() -> None:
    op.create_table(
        'galleries',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('analysis_progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_search_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('face_collection_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_galleries_id', 'galleries', ['id'])

    op.create_table(
        'photos',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('gallery_id', sa.String(length=36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('s3_key', sa.String(length=512), nullable=False),
        sa.Column('thumbnail_key', sa.String(length=512), nullable=True),
        sa.Column('mime_type', sa.String(length=100), nullable=False, server_default='image/jpeg'),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_photos_id', 'photos', ['id'])
    op.create_index('ix_photos_gallery_id', 'photos', ['gallery_id'])

    op.create_table(
        'photo_analyses',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('photo_id', sa.String(length=36), sa.ForeignKey('photos.id', ondelete='CASCADE'), nullable=False),
        sa.Column('gallery_id', sa.String(length=36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', analysis_status, nullable=False, server_default='PENDING'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('analysis_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('search_tags', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='[]'),
        sa.Column('face_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('face_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('analyzed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_photo_analyses_photo_id', 'photo_analyses', ['photo_id'], unique=True)
    op.create_index('ix_photo_analyses_gallery_id', 'photo_analyses', ['gallery_id'])
    op.create_index('ix_photo_analyses_status', 'photo_analyses', ['status'])
    # Search retrieval: full-text on description, tag overlap on search_tags
    op.execute(
        "CREATE INDEX ix_photo_analyses_description_fts ON photo_analyses "
        "USING gin (to_tsvector('english', COALESCE(description, '')))"
    )
    op.execute(
        "CREATE INDEX ix_photo_analyses_search_tags ON photo_analyses USING gin (search_tags)"
    )

    op.create_table(
        'person_clusters',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('gallery_id', sa.String(length=36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('role', sa.String(length=100), nullable=True),
        sa.Column('face_description', sa.Text(), nullable=True),
        sa.Column('photo_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='[]'),
        sa.Column('embedding_face_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='[]'),
        sa.Column('representative_face_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_person_clusters_id', 'person_clusters', ['id'])
    op.create_index('ix_person_clusters_gallery_id', 'person_clusters', ['gallery_id'])


def downgrade() -> None:
    op.drop_table('person_clusters')
    op.execute("DROP INDEX IF EXISTS ix_photo_analyses_search_tags")
    op.execute("DROP INDEX IF EXISTS ix_photo_analyses_description_fts")
    op.drop_table('photo_analyses')
    op.drop_table('photos')
    op.drop_table('galleries')
    analysis_status.drop(op.get_bind(), checkfirst=True)
