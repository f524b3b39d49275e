# FILE: /academy/config/celery.py
import os

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'academy.config.settings')

app = Celery('academy')

# Configure Celery using Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks.py in every installed app
app.autodiscover_tasks()

app.conf.task_queues = (
    Queue('default'),      # Fallback queue for unmatched tasks
    Queue('emails'),
    Queue('payments'),
)
app.conf.task_default_queue = 'default'
app.conf.task_default_exchange = 'default'
app.conf.task_default_routing_key = 'default'

# Periodic tasks (Celery Beat); django_celery_beat mirrors these into the DB scheduler
app.conf.beat_schedule = {
    'sweep-stale-purchases': {
        'task': 'academy.apps.payments.tasks.sweep_stale_purchases',
        'schedule': crontab(minute='*/15'),
        'options': {'queue': 'payments'}
    },
}

# More specific patterns must come before generic ones
app.conf.task_routes = {
    'academy.apps.payments.tasks.send_*': {
        'queue': 'emails'
    },
    'academy.apps.payments.tasks.*': {
        'queue': 'payments'
    },
}

app.conf.task_time_limit = 300  # 5 minutes max
app.conf.task_soft_time_limit = 240
app.conf.result_expires = 3600

app.conf.task_acks_late = True
app.conf.task_reject_on_worker_lost = True
app.conf.broker_transport_options = {
    'visibility_timeout': 3600,
    'socket_connect_timeout': 5,
    'retry_on_timeout': True,
}
