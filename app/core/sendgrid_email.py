import logging
import re
from pathlib import Path
from typing import Any, Dict, Tuple

from jinja2 import Environment, FileSystemLoader, TemplateNotFound
from sendgrid import SendGridAPIClient  # type: ignore
from sendgrid.helpers.mail import Content, From, Mail, To  # type: ignore

from ..models.notification import NoticeKind
from .settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "email"

SUBJECTS: Dict[NoticeKind, str] = {
    NoticeKind.SPOT_OPENED: "A spot opened up - {event_title}",
    NoticeKind.WAITLISTED: "You're on the waitlist - {event_title}",
    NoticeKind.LEFT_WAITLIST: "You left the waitlist - {event_title}",
    NoticeKind.OFFER_EXPIRED: "Your spot offer expired - {event_title}",
    NoticeKind.BOOKING_CONFIRMED: "You're in! - {event_title}",
    NoticeKind.EVENT_CANCELLED: "Activity cancelled - {event_title}",
    NoticeKind.WAITLIST_MILESTONE: "Your waitlist is growing - {event_title}",
}

ACCEPTED_STATUS_CODES = (200, 201, 202)


def _html_to_text(html: str) -> str:
    text = re.sub(r"<[^>]+>", "", html)
    return re.sub(r"\s+", " ", text).strip()


class SendGridEmailService:
    """Renders one template per notice kind and sends it through SendGrid.

    Without an API key and sender address the service still renders, but only
    logs what it would have sent.
    """

    def __init__(self) -> None:
        email = settings.email
        self.enabled = bool(
            email.EMAILS_ENABLED and email.SENDGRID_API_KEY and email.SENDGRID_FROM_EMAIL
        )
        self.client = SendGridAPIClient(api_key=email.SENDGRID_API_KEY) if self.enabled else None
        if not self.enabled:
            logger.warning("SendGrid not configured. Email notifications disabled.")

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)), autoescape=True
        )

    def render(self, kind: NoticeKind, context: Dict[str, Any]) -> Tuple[str, str]:
        """HTML body plus a plain-text body, from ``<kind>.txt`` when present."""
        html = self.jinja_env.get_template(f"{kind.value}.html").render(**context)
        try:
            text = self.jinja_env.get_template(f"{kind.value}.txt").render(**context)
        except TemplateNotFound:
            text = _html_to_text(html)
        return html, text

    async def _send_email_sendgrid(
        self, to_email: str, subject: str, html_content: str, text_content: str
    ) -> bool:
        if self.client is None:
            logger.info(f"SendGrid disabled. Would send to {to_email}: {subject}")
            return False

        mail = Mail(
            from_email=From(
                email=settings.email.SENDGRID_FROM_EMAIL,
                name=settings.email.SENDGRID_FROM_NAME,
            ),
            to_emails=To(to_email),
            subject=subject,
            html_content=Content("text/html", html_content),
            plain_text_content=Content("text/plain", text_content),
        )
        try:
            response = self.client.send(mail)
        except Exception as e:
            logger.error(f"SendGrid email send failed: {e}")
            return False

        if response.status_code not in ACCEPTED_STATUS_CODES:
            logger.error(f"SendGrid API error: {response.status_code} - {response.body}")
            return False
        logger.info(f"Email sent successfully to {to_email}")
        return True

    async def send_notice_email(
        self,
        user_email: str,
        user_name: str,
        kind: NoticeKind,
        context: Dict[str, Any],
    ) -> bool:
        event_title = context.get("event_title") or "your activity"
        try:
            html_content, text_content = self.render(
                kind,
                {
                    **context,
                    "user_name": user_name,
                    "project_name": settings.PROJECT_NAME,
                    "support_email": settings.email.SENDGRID_FROM_EMAIL,
                },
            )
        except Exception as e:
            logger.error(f"Template rendering failed for {kind.value}: {e}")
            return False

        return await self._send_email_sendgrid(
            to_email=user_email,
            subject=SUBJECTS[kind].format(event_title=event_title),
            html_content=html_content,
            text_content=text_content,
        )
