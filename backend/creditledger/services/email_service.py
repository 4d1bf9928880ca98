"""Credit notification emails.

Mail is written to the ``mail_outbox`` collection and sent later by the
dispatcher job (see ``dispatch_pending``). Queueing never raises: a failed
notification must not unwind the ledger change that triggered it.
"""
from postmarker.core import PostmarkClient
from datetime import datetime, timezone
from html import escape
from typing import Optional, Dict, Any, Tuple
import logging
import os

from database import database
from creditledger.models.notifications import OutboxMail, MailStatus, MailTemplate
from creditledger.models.credits import RESET_DAY_OF_MONTH

logger = logging.getLogger(__name__)

DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "noreply@example.com")
APP_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
PRODUCT_NAME = os.getenv("PRODUCT_NAME", "CV Studio")

MAX_SEND_ATTEMPTS = 3
DISPATCH_BATCH_SIZE = 50


def _credit_word(amount: int) -> str:
    return "credit" if amount == 1 else "credits"


def _wrap_in_layout(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(title)}</title></head>
<body style="margin:0;padding:0;background-color:#f3f4f6;font-family:Arial,sans-serif;">
  <table role="presentation" cellpadding="0" cellspacing="0" width="100%">
    <tr><td style="padding:32px 16px;">
      <table role="presentation" cellpadding="0" cellspacing="0" width="600" align="center" style="background-color:#ffffff;border-radius:12px;">
        <tr><td style="padding:32px;">{body}</td></tr>
        <tr><td style="padding:16px 32px;font-size:12px;color:#9ca3af;">{escape(PRODUCT_NAME)}</td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>"""


def _cta_button(label: str, url: str) -> str:
    return (
        f'<p style="margin:24px 0 0 0;"><a href="{url}" style="display:inline-block;padding:12px 24px;'
        f'background-color:#6366f1;color:#ffffff;border-radius:8px;text-decoration:none;">{escape(label)}</a></p>'
    )


def render_credits_low_email(display_name: str, remaining: int) -> Tuple[str, str, str]:
    """Returns (subject, html, text)."""
    word = _credit_word(remaining)
    name = escape(display_name)
    body = f"""
    <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">Your credits are running low</h1>
    <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Hi {name},</p>
    <p style="margin:0 0 24px 0;font-size:15px;color:#374151;">
      You have <strong>{remaining} {word}</strong> left. Buy extra credits to keep generating without interruption.
    </p>
    <p style="margin:0;font-size:14px;color:#6b7280;">
      Your free credits are topped up automatically on day {RESET_DAY_OF_MONTH} of each month.
    </p>
    {_cta_button("Buy credits", f"{APP_URL}/dashboard/credits")}
    """
    text = (
        f"Hi {display_name},\n\n"
        f"You have {remaining} {word} left. Buy extra credits at {APP_URL}/dashboard/credits.\n\n"
        f"Your free credits are topped up automatically on day {RESET_DAY_OF_MONTH} of each month.\n"
    )
    return f"You have {remaining} {word} left", _wrap_in_layout("Credits running low", body), text


def render_payment_confirmation_email(display_name: str, credits: int, package_name: str) -> Tuple[str, str, str]:
    name = escape(display_name)
    body = f"""
    <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">Payment confirmed</h1>
    <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Hi {name},</p>
    <p style="margin:0 0 24px 0;font-size:15px;color:#374151;">Thanks for your purchase! Your payment was processed successfully.</p>
    <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="background-color:#f0f0ff;border-radius:8px;">
      <tr><td style="padding:16px 24px;font-size:14px;color:#6b7280;">Package</td>
          <td style="padding:16px 24px;font-size:14px;color:#111827;text-align:right;">{escape(package_name)}</td></tr>
      <tr><td style="padding:0 24px 16px 24px;font-size:14px;color:#6b7280;">Credits added</td>
          <td style="padding:0 24px 16px 24px;font-size:14px;color:#6366f1;font-weight:700;text-align:right;">+{credits}</td></tr>
    </table>
    {_cta_button("Go to dashboard", f"{APP_URL}/dashboard")}
    """
    text = (
        f"Hi {display_name},\n\n"
        f"Thanks for your purchase! {credits} credits ({package_name}) were added to your account.\n"
    )
    return f"Payment confirmed - {credits} credits added", _wrap_in_layout("Payment confirmed", body), text


def render_credits_reset_email(display_name: str, credit_amount: int) -> Tuple[str, str, str]:
    name = escape(display_name)
    body = f"""
    <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">Your credits have been topped up</h1>
    <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Hi {name},</p>
    <p style="margin:0 0 24px 0;font-size:15px;color:#374151;">
      A new month has started and you have <strong>{credit_amount} free {_credit_word(credit_amount)}</strong> to use.
    </p>
    {_cta_button("Create a CV", f"{APP_URL}/dashboard")}
    """
    text = f"Hi {display_name},\n\nA new month has started and you have {credit_amount} free credits to use.\n"
    return "Your monthly credits have been topped up", _wrap_in_layout("Credits topped up", body), text


def render_welcome_email(display_name: str, free_credits: int) -> Tuple[str, str, str]:
    name = escape(display_name)
    body = f"""
    <h1 style="margin:0 0 16px 0;font-size:22px;color:#111827;">Welcome to {escape(PRODUCT_NAME)}</h1>
    <p style="margin:0 0 16px 0;font-size:15px;color:#374151;">Hi {name},</p>
    <p style="margin:0 0 24px 0;font-size:15px;color:#374151;">
      Your account is ready with <strong>{free_credits} free {_credit_word(free_credits)}</strong>.
      Use them with our platform AI, or add your own API key in Settings.
    </p>
    {_cta_button("Get started", f"{APP_URL}/dashboard")}
    """
    text = f"Hi {display_name},\n\nYour account is ready with {free_credits} free credits.\n"
    return f"Welcome to {PRODUCT_NAME}", _wrap_in_layout("Welcome", body), text


class EmailService:
    def __init__(self):
        postmark_token = os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    def _get_db(self):
        return database.get_db()

    async def queue_email(
        self,
        to: Optional[str],
        template: MailTemplate,
        rendered: Tuple[str, str, str],
        account_id: Optional[str] = None,
    ) -> Optional[str]:
        """Write a mail to the outbox. Logs and returns None on failure."""
        if not to:
            logger.info(f"No recipient for {template.value} mail (account {account_id}), skipping")
            return None
        subject, html_body, text_body = rendered
        try:
            mail = OutboxMail(
                account_id=account_id,
                template=template,
                to=to,
                subject=subject,
                html_body=html_body,
                text_body=text_body,
            )
            db = self._get_db()
            await db.mail_outbox.insert_one(mail.model_dump())
            logger.info(f"Queued {template.value} mail {mail.mail_id} for account {account_id}")
            return mail.mail_id
        except Exception as e:
            logger.warning(f"Failed to queue {template.value} mail for account {account_id}: {e}")
            return None

    async def send_credits_low_email(
        self,
        account_id: str,
        email: Optional[str],
        display_name: Optional[str],
        remaining: int,
    ) -> Optional[str]:
        return await self.queue_email(
            email,
            MailTemplate.CREDITS_LOW,
            render_credits_low_email(display_name or "there", remaining),
            account_id=account_id,
        )

    async def send_payment_confirmation_email(
        self,
        account_id: str,
        email: Optional[str],
        display_name: Optional[str],
        credits: int,
        package_name: str,
    ) -> Optional[str]:
        return await self.queue_email(
            email,
            MailTemplate.PAYMENT_CONFIRMATION,
            render_payment_confirmation_email(display_name or "there", credits, package_name),
            account_id=account_id,
        )

    async def send_credits_reset_email(
        self,
        account_id: str,
        email: Optional[str],
        display_name: Optional[str],
        credit_amount: int,
    ) -> Optional[str]:
        return await self.queue_email(
            email,
            MailTemplate.CREDITS_RESET,
            render_credits_reset_email(display_name or "there", credit_amount),
            account_id=account_id,
        )

    async def send_welcome_email(
        self,
        account_id: str,
        email: Optional[str],
        display_name: Optional[str],
        free_credits: int,
    ) -> Optional[str]:
        return await self.queue_email(
            email,
            MailTemplate.WELCOME,
            render_welcome_email(display_name or "there", free_credits),
            account_id=account_id,
        )

    async def dispatch_pending(self) -> Dict[str, int]:
        """Send queued and retryable mail. Scheduled job entry point."""
        db = self._get_db()
        cursor = db.mail_outbox.find(
            {
                "status": {"$in": [MailStatus.QUEUED.value, MailStatus.FAILED.value]},
                "attempts": {"$lt": MAX_SEND_ATTEMPTS},
            },
            {"_id": 0}
        ).sort("created_at", 1).limit(DISPATCH_BATCH_SIZE)
        pending = await cursor.to_list(DISPATCH_BATCH_SIZE)

        counts = {"sent": 0, "failed": 0, "skipped": 0}
        for mail in pending:
            status, message_id, error = self._send(mail)
            update: Dict[str, Any] = {"status": status.value, "last_error": error}
            if message_id:
                update["provider_message_id"] = message_id
            if status == MailStatus.SENT:
                update["sent_at"] = datetime.now(timezone.utc)
            await db.mail_outbox.update_one(
                {"mail_id": mail["mail_id"]},
                {"$set": update, "$inc": {"attempts": 1}}
            )
            counts[status.value] += 1

        if pending:
            logger.info(f"Mail dispatch: {counts}")
        return counts

    def _send(self, mail: Dict[str, Any]) -> Tuple[MailStatus, Optional[str], Optional[str]]:
        if not self.client:
            logger.info(f"Email (not sent, no Postmark token) to account {mail.get('account_id')}: {mail['subject']}")
            return MailStatus.SKIPPED, None, None
        try:
            response = self.client.emails.send(
                From=DEFAULT_SENDER,
                To=mail["to"],
                Subject=mail["subject"],
                HtmlBody=mail["html_body"],
                TextBody=mail["text_body"],
                Tag=mail["template"],
            )
            return MailStatus.SENT, response.get("MessageID"), None
        except Exception as e:
            logger.warning(f"Failed to send mail {mail['mail_id']}: {e}")
            return MailStatus.FAILED, None, str(e)[:500]


email_service = EmailService()
