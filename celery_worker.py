import os
from celery import Celery
from dotenv import load_dotenv

# --- CELERY WORKER INITIALIZATION ---

# 1. Load environment variables. This MUST happen before anything else.
load_dotenv()

# 2. Create the Celery app instance.
celery_app = Celery('tasks',
                    broker=os.environ.get('CELERY_BROKER_URL', os.environ.get('REDIS_URL', 'redis://localhost:6379/0')),
                    include=['tasks']) # This tells Celery to look for tasks in tasks.py

celery_app.conf.update(
    task_track_started=True,
    timezone=os.environ.get('APP_TIMEZONE', 'Asia/Seoul'),
    beat_schedule={
        'sweep-stale-submissions': {
            'task': 'sweep_stale_submissions',
            'schedule': 300.0,
        },
    },
)
