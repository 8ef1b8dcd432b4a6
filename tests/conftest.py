"""
Shared test configuration
=========================

- In-memory SQLite session with all tables
- Settings with every delay set to zero
- Fake image store, face detector, annotator and face index
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gallery_ai.app.config import Settings
from gallery_ai.db.base import Base
from gallery_ai.models import Gallery, Photo

from fakes import FakeAnnotator, FakeDetector, FakeFaceIndex, FakeImageStore, make_jpeg


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def db_session():
    """Create test database session."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def test_settings():
    return Settings(
        ANALYSIS_BATCH_SIZE=3,
        ANALYSIS_BATCH_DELAY_SECS=0,
        ANALYSIS_RETRY_BACKOFF_SECS=0,
        ANALYSIS_RATE_LIMIT_DELAY_SECS=0,
        ANALYSIS_STALE_AFTER_SECS=300,
        GEMINI_API_KEY=None,
    )


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def annotator():
    return FakeAnnotator()


@pytest.fixture
def face_index():
    return FakeFaceIndex()


@pytest.fixture
def make_gallery(db_session, image_store):
    """Create a gallery with `n` photos whose thumbnails are in the fake store."""

    def _make(n: int = 3, name: str = "Smith Wedding", with_thumbnails: bool = True):
        gallery = Gallery(name=name)
        db_session.add(gallery)
        db_session.flush()

        photos = []
        for i in range(n):
            photo = Photo(
                gallery_id=gallery.id,
                s3_key=f"galleries/{gallery.id}/photos/{i}.jpg",
                thumbnail_key=f"galleries/{gallery.id}/thumbs/{i}.jpg" if with_thumbnails else None,
                mime_type="image/jpeg",
                order=i,
            )
            db_session.add(photo)
            photos.append(photo)
        db_session.commit()

        for i, photo in enumerate(photos):
            image_store.objects[photo.thumbnail_key or photo.s3_key] = make_jpeg(seed=i + 1)
        return gallery, photos

    return _make


@pytest.fixture
def image_of(image_store):
    """Bytes served for a photo (thumbnail preferred)."""

    def _image_of(photo) -> bytes:
        return image_store.objects[photo.thumbnail_key or photo.s3_key]

    return _image_of
