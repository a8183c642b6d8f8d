# Overview: Background task handlers; imported by the app factory so the queue knows every task type.

from __future__ import annotations

from .extensions import db
from .models import EcommerceOrder
from .services import notification_service, return_service
from .services.task_queue import TaskError, task_handler


def _raise_on_failure(result) -> None:
    # Unconfigured channels are skipped, not retried
    if not result.success and not result.skipped:
        raise TaskError(result.error or f"{result.channel} delivery failed")


@task_handler("email")
def send_email_task(payload: dict) -> None:
    result = notification_service.send_email(
        payload.get("to"), payload.get("subject", ""), payload.get("html", ""), payload.get("text")
    )
    _raise_on_failure(result)


@task_handler("sms")
def send_sms_task(payload: dict) -> None:
    result = notification_service.send_sms(payload.get("phone"), payload.get("message", ""))
    _raise_on_failure(result)


@task_handler("order_confirmation")
def order_confirmation_task(payload: dict) -> None:
    order = db.session.get(EcommerceOrder, payload.get("order_id"))
    if order is None:
        return
    subject, html = notification_service.render_order_confirmation(order)
    _raise_on_failure(notification_service.send_email(order.customer_email, subject, html))


@task_handler("order_status_notification")
def order_status_task(payload: dict) -> None:
    order = db.session.get(EcommerceOrder, payload.get("order_id"))
    if order is None:
        return
    subject, html = notification_service.render_order_status(order)
    _raise_on_failure(notification_service.send_email(order.customer_email, subject, html))


@task_handler(return_service.POST_APPROVAL_TASK)
def return_post_approval_task(payload: dict) -> None:
    return_service.process_approved_return(payload.get("return_id"))
