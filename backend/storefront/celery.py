"""
Celery application for background group buy maintenance.
Task schedule lives in settings as CELERY_BEAT_SCHEDULE.
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE',
                      'storefront.settings.development')

app = Celery('storefront')
app.config_from_object('django.conf:settings', namespace='CELERY')

app.conf.update(
    broker_connection_retry=True,
    broker_connection_retry_on_startup=True,
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    timezone='UTC',
    enable_utc=True,
    result_expires=3600,
    task_track_started=True,
    # Reconciliation touches every active group; keep it well under the beat interval
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
)

app.autodiscover_tasks()
