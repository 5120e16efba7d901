import datetime
import logging

import completion
import dependencies
import progress_tracker
from celery_worker import celery_app
from exceptions import ConcurrencyConflict, NotFound
from logging_config import setup_logging
from timezone_utils import utcnow

# --- SETUP & CONFIG ---
setup_logging()

# --- LAZY INITIALIZED APP ---
_flask_app = None
def get_flask_app():
    global _flask_app
    if _flask_app is None:
        from main import create_app
        _flask_app = create_app()
    return _flask_app


@celery_app.task(name="reverify_submission_task", bind=True, max_retries=3, default_retry_delay=60)
def reverify_submission_task(self, user_mission_id):
    """Retries automatic verification for a submission the judges could not decide."""
    with get_flask_app().app_context():
        try:
            result = completion.reverify_submission(user_mission_id)
        except NotFound:
            logging.warning(f"User mission {user_mission_id} disappeared before re-verification")
            return None
        except ConcurrencyConflict as e:
            # Someone (usually a reviewer) got there first; re-read on the next attempt.
            raise self.retry(exc=e)

        if result is None:
            return None
        logging.info(
            f"Re-verification of {user_mission_id}: decided={result.is_auto_verified} "
            f"status={result.user_mission.status.value}"
        )
        return result.user_mission.status.value


@celery_app.task(name="sweep_stale_submissions")
def sweep_stale_submissions(stale_minutes=None):
    """Queues re-verification for every submission left waiting longer than the stale window."""
    stale_minutes = stale_minutes or dependencies.STALE_SUBMISSION_MINUTES
    cutoff = utcnow() - datetime.timedelta(minutes=stale_minutes)
    with get_flask_app().app_context():
        stale_ids = [um.id for um in progress_tracker.list_pending_verifications(submitted_before=cutoff)]

    for user_mission_id in stale_ids:
        reverify_submission_task.delay(user_mission_id)
    logging.info(f"Queued re-verification for {len(stale_ids)} stale submission(s)")
    return stale_ids
