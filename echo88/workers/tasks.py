import logging
from typing import Optional

from echo88.services.email import EmailDeliveryError, send_login_notification
from echo88.workers.celery_app import celery_app


logger = logging.getLogger(__name__)

MAX_RETRIES = 3


@celery_app.task(bind=True, name="send_login_notification_task", max_retries=MAX_RETRIES)
def send_login_notification_task(
    self,
    email: str,
    device: str,
    browser: str,
    ip: str,
    location: Optional[str] = None,
) -> None:
    """Tell the account owner about a new login.

    Delivery failures are retried with backoff on a worker. An eager run
    executes inside the login request, so it gives up after one attempt.
    """
    logger.info("[background] login notification for %s from %s", email, ip)
    try:
        send_login_notification(email, device, browser, ip, location)
    except EmailDeliveryError as exc:
        if self.request.is_eager:
            raise
        logger.warning(
            "[background] login notification for %s failed (attempt %s): %s",
            email,
            self.request.retries + 1,
            exc,
        )
        raise self.retry(exc=exc, countdown=2 ** self.request.retries)
