import os
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from twilio.rest import Client
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from models import Notification
import logging
from typing import Optional, Iterable, List

logger = logging.getLogger(__name__)

# --- Email Configuration ---
SMTP_SERVER = os.getenv("SMTP_SERVER")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
EMAIL_SENDER = os.getenv("EMAIL_SENDER")

# --- Twilio Configuration ---
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

ADMIN_ROLES = ["admin", "finance manager"]


async def notify_roles(
    db: AsyncSession,
    title: str,
    message: str,
    notification_type: str = "general",
    recipient_roles: Optional[Iterable[str]] = None,
    dedupe_key: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> List[Notification]:
    """
    Persist one notification per recipient role.
    A role that already holds a notification with the same dedupe key is skipped,
    so repeated identical events do not spam recipients.
    """
    roles = []
    for role in recipient_roles or ADMIN_ROLES:
        normalized = role.strip().lower() if isinstance(role, str) else ""
        if normalized and normalized not in roles:
            roles.append(normalized)
    if not roles:
        roles.append("admin")

    created = []
    for role in roles:
        if dedupe_key:
            existing = await db.execute(
                select(Notification.id).where(
                    Notification.recipient_role == role,
                    Notification.dedupe_key == dedupe_key
                )
            )
            if existing.first():
                continue

        notification = Notification(
            recipient_role=role,
            title=title[:200],
            message=message[:1000],
            type=notification_type,
            dedupe_key=dedupe_key,
            notification_metadata={**(metadata or {}), "dedupeKey": dedupe_key},
        )
        db.add(notification)
        created.append(notification)

    if created:
        await db.flush()
    return created


def send_email(to_email: str, subject: str, body_html: str):
    """Sends an email using SMTP."""
    if not all([SMTP_SERVER, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, EMAIL_SENDER]):
        logger.error("SMTP settings are not fully configured. Cannot send email.")
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = EMAIL_SENDER
    message["To"] = to_email
    message.attach(MIMEText(body_html, "html"))

    try:
        with smtplib.SMTP(SMTP_SERVER, SMTP_PORT) as server:
            server.starttls()
            server.login(SMTP_USER, SMTP_PASSWORD)
            server.sendmail(EMAIL_SENDER, to_email, message.as_string())
        logger.info(f"Email sent successfully to {to_email}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


def send_sms(to_phone_number: str, body: str):
    """Sends an SMS using Twilio."""
    if not all([TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER]):
        logger.error("Twilio settings are not fully configured. Cannot send SMS.")
        return False

    try:
        client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
        message = client.messages.create(
            body=body,
            from_=TWILIO_PHONE_NUMBER,
            to=to_phone_number
        )
        logger.info(f"SMS sent successfully to {to_phone_number}, SID: {message.sid}")
        return True
    except Exception as e:
        logger.error(f"Failed to send SMS to {to_phone_number}: {e}")
        return False


def looks_like_phone_number(contact: Optional[str]) -> bool:
    if not contact:
        return False
    digits = [c for c in contact if c.isdigit()]
    return len(digits) >= 9 and all(c.isdigit() or c in "+-() " for c in contact.strip())


# Email Templates
def get_supplier_response_email(order_data: dict, action: str) -> tuple[str, str]:
    """Generate the admin email sent when a supplier answers a procurement order"""
    verb = "accepted" if action == "accept" else "declined"

    subject = f"Supplier {verb} order #{str(order_data['id'])[:8]}"

    body = f"""
    <html>
    <body>
        <h2>Procurement order {verb}</h2>
        <p>Hello,</p>
        <p>Supplier {order_data.get('supplier_id', 'N/A')} has {verb} their items on the following order:</p>

        <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px;">
            <h3>Order Details:</h3>
            <p><strong>Order ID:</strong> {order_data['id']}</p>
            <p><strong>Items affected:</strong> {order_data.get('item_count', 0)}</p>
            <p><strong>Supplier total:</strong> {order_data.get('supplier_total', 0):.2f}</p>
            <p><strong>Order status:</strong> {order_data['status']}</p>
        </div>

        <p>Best regards,<br>Vintora Hardware</p>
    </body>
    </html>
    """

    return subject, body


def get_payment_received_email(payment_data: dict) -> tuple[str, str]:
    """Generate the finance email sent when a customer payment is confirmed"""
    subject = f"Payment received - {payment_data.get('payment_ref', payment_data['id'])}"

    body = f"""
    <html>
    <body>
        <h2>Customer payment received</h2>
        <p>Hello,</p>
        <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px;">
            <p><strong>Payment:</strong> {payment_data.get('payment_ref', payment_data['id'])}</p>
            <p><strong>Order ID:</strong> {payment_data.get('order_id') or 'N/A'}</p>
            <p><strong>Amount:</strong> {payment_data.get('amount', 0):.2f} {str(payment_data.get('currency', '')).upper()}</p>
        </div>
        <p>Best regards,<br>Vintora Hardware</p>
    </body>
    </html>
    """

    return subject, body


# SMS Templates
def get_supplier_response_sms(order_id: str, action: str, status: str) -> str:
    """Generate the SMS sent to the order contact when a supplier answers"""
    verb = "accepted" if action == "accept" else "declined"
    return f"Order #{str(order_id)[:8]}: a supplier has {verb} their items. Order status: {status}. - Vintora Hardware"
