"""Mail outbox models"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class MailTemplate(str, Enum):
    CREDITS_LOW = "credits-low"
    PAYMENT_CONFIRMATION = "payment-confirmation"
    CREDITS_RESET = "credits-reset"
    WELCOME = "welcome"


class MailStatus(str, Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # No mail provider configured


class OutboxMail(BaseModel):
    """Queued email. The dispatcher sends it and records the outcome."""
    mail_id: str = Field(default_factory=lambda: f"MAIL-{uuid.uuid4().hex[:12].upper()}")
    account_id: Optional[str] = None
    template: MailTemplate
    to: str
    subject: str
    html_body: str
    text_body: str

    status: MailStatus = MailStatus.QUEUED
    attempts: int = 0
    last_error: Optional[str] = None
    provider_message_id: Optional[str] = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sent_at: Optional[datetime] = None

    model_config = {"extra": "ignore", "use_enum_values": True}
