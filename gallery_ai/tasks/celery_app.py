from celery import Celery

from gallery_ai.app.config import settings

# Create Celery instance and include explicit task modules
celery_app = Celery(
    'gallery_ai',
    include=[
        'gallery_ai.tasks.workers.analysis_worker',
    ]
)

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60 * 60,  # 1 hour hard limit for large galleries
)
