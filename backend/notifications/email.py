"""
Email Delivery for receipts and package notices.

Plain transactional messages sent through SendGrid. Called from outbox
handlers, so a failed send raises (or returns False) and the outbox retries.
"""

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

logger = structlog.get_logger()


def send_email(to_email: str, subject: str, html_content: str) -> bool:
    """Send one message. Returns True when SendGrid accepted it."""
    settings = get_settings()
    if not settings.sendgrid_api_key:
        logger.info("email.skipped_unconfigured", to=to_email, subject=subject)
        return True

    sg = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
    message = Mail(
        from_email=settings.email_from,
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
    )
    response = sg.send(message)
    accepted = response.status_code in (200, 201, 202)
    logger.info("email.sent" if accepted else "email.rejected", to=to_email, status=response.status_code)
    return accepted


def payment_receipt_html(payload: dict) -> str:
    settings = get_settings()
    rows = [
        ("Amount", f"{payload.get('amount', 0):.2f} {payload.get('currency', '')}"),
        ("Method", payload.get("method", "")),
        ("Tracking number", payload.get("tracking_number") or ""),
        ("Invoice", payload.get("reference") or ""),
        ("Receipt number", payload.get("receipt_number") or ""),
        ("Paid at", payload.get("paid_at") or ""),
    ]
    table = "".join(f"<tr><td><strong>{label}</strong></td><td>{value}</td></tr>" for label, value in rows if value)
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>{settings.app_name} payment receipt</h2>
      <p>Hi {payload.get('first_name') or 'there'}, we received your payment.</p>
      <table cellpadding="6">{table}</table>
    </div>
    """


def package_received_html(payload: dict) -> str:
    settings = get_settings()
    return f"""
    <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
      <h2>Your package has arrived</h2>
      <p>Hi {payload.get('first_name') or 'there'},</p>
      <p>Package <strong>{payload.get('tracking_number')}</strong>
         ({payload.get('description') or 'no description'}, {payload.get('weight', 0)} kg)
         was received at {payload.get('warehouse') or 'our warehouse'}.</p>
      <p><a href="{settings.app_public_url}/customer/packages">Track it in your account</a></p>
    </div>
    """


def send_payment_receipt(payload: dict) -> bool:
    subject = f"Payment receipt {payload.get('receipt_number') or ''}".strip()
    return send_email(payload["to"], subject, payment_receipt_html(payload))


def send_package_received(payload: dict) -> bool:
    subject = f"Package {payload.get('tracking_number')} received"
    return send_email(payload["to"], subject, package_received_html(payload))
