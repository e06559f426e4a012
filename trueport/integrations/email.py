"""
Outbound email through AWS SES.

Configure AWS_SES_FROM_EMAIL (a verified SES identity) plus AWS_REGION,
AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY. Without them nothing is sent
and the plain-text body is logged instead, which is how verification links
are picked up during local development.

Delivery never raises: a failed send is logged, reported, and answered
with False so the transition that triggered it stands.
"""

import logging
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from trueport.config import Settings, get_settings
from trueport.integrations.sentry import capture_exception

logger = logging.getLogger(__name__)


# =============================================================================
# Templates
# =============================================================================


@dataclass(frozen=True)
class Template:
    """
    A message in three parts. `lines` are shared by the HTML and text
    bodies; `button` is the (label, url variable) call to action.
    """

    subject: str
    heading: str
    lines: tuple[str, ...]
    button: tuple[str, str]
    footer: str = ""


_PAGE = (
    '<html><body style="font-family: -apple-system, BlinkMacSystemFont, \'Segoe UI\', Roboto, '
    'sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">{content}</body></html>'
)
_BUTTON = (
    '<p style="text-align: center; margin: 30px 0;"><a href="{url}" style="background: #2F6FEB; '
    'color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; '
    'display: inline-block;">{label}</a></p>'
)

TEMPLATES = {
    "verification_request": Template(
        subject="{requester_name} asked you to verify an entry on TruePort",
        heading="Verification request",
        lines=(
            "{requester_name} listed you as the person who can confirm this {subject_type}:",
            "{claim_title}",
        ),
        button=("Review and respond", "link"),
        footer="You don't need an account. Anyone with this link can respond, so don't forward it.",
    ),
    "verification_resolved": Template(
        subject="Your {subject_type} was {outcome}",
        heading="Your {subject_type} was {outcome}",
        lines=("{verifier_email} has responded to your verification request.", "{reason}"),
        button=("Open TruePort", "app_url"),
    ),
    "association_resolved": Template(
        subject="Your request to join {institute} was {outcome}",
        heading="Request {outcome}",
        lines=("Your request to join {institute} was {outcome}.", "{reason}"),
        button=("Open TruePort", "app_url"),
    ),
}


def render(template: Template, data: dict[str, Any]) -> tuple[str, str, str]:
    """(subject, html, text). Raises KeyError when `data` lacks a variable."""
    lines = [line.format(**data) for line in template.lines]
    heading = template.heading.format(**data)
    label, url_key = template.button
    url = data[url_key]

    html = f'<h1 style="color: #333;">{heading}</h1>'
    html += "".join(f"<p>{line}</p>" for line in lines if line)
    html += _BUTTON.format(url=url, label=label)
    text = [heading, "", *[line for line in lines if line], "", f"{label}: {url}"]
    if template.footer:
        html += f'<p style="color: #666; font-size: 14px;">{template.footer}</p>'
        text += ["", template.footer]

    return template.subject.format(**data), _PAGE.format(content=html), "\n".join(text)


# =============================================================================
# Service
# =============================================================================


class EmailService:
    def __init__(self, settings: Settings | None = None, client: Any = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self):
        """SES client, created on first use."""
        if self._client is None and self.settings.use_aws:
            self._client = boto3.client(
                "ses",
                region_name=self.settings.aws_region,
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
            )
        return self._client

    @property
    def is_configured(self) -> bool:
        if not self.settings.aws_ses_from_email:
            return False
        return self._client is not None or self.settings.use_aws

    def _deliver(self, to: str, subject: str, html: str, text: str) -> str:
        """Hand one message to SES and return its MessageId."""
        response = self.client.send_email(
            Source=self.settings.aws_ses_from_email,
            Destination={"ToAddresses": [to]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {
                    "Html": {"Data": html, "Charset": "UTF-8"},
                    "Text": {"Data": text, "Charset": "UTF-8"},
                },
            },
        )
        return response["MessageId"]

    async def send(self, to: str, template: str, data: dict[str, Any] | None = None) -> bool:
        """Render `template` with `data` and mail it. True only if SES accepted it."""
        if template not in TEMPLATES:
            logger.error(f"Unknown email template: {template}")
            return False

        try:
            subject, html, text = render(TEMPLATES[template], data or {})
        except KeyError as e:
            logger.error(f"Missing template variable for '{template}': {e}")
            return False

        if not self.is_configured:
            logger.warning(f"Email not configured - would send '{template}' to {to}")
            logger.info(f"Email content: {text}")
            return False

        try:
            message_id = self._deliver(to, subject, html, text)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            capture_exception(e, template=template)
            return False

        logger.info(f"Email sent to {to}: {template} (MessageId: {message_id})")
        return True

    # =========================================================================
    # Workflow messages
    # =========================================================================

    async def send_verification_request(
        self,
        verifier_email: str,
        link: str,
        requester_name: str,
        subject_type: str,
        claim_title: str,
    ) -> bool:
        """The capability link, sent only to the named verifier."""
        return await self.send(
            to=verifier_email,
            template="verification_request",
            data={
                "link": link,
                "requester_name": requester_name or "A TruePort user",
                "subject_type": subject_type.lower(),
                "claim_title": claim_title or "(untitled)",
            },
        )

    async def send_verification_resolved(
        self,
        to: str,
        subject_type: str,
        approved: bool,
        verifier_email: str,
        reason: str | None = None,
    ) -> bool:
        return await self.send(
            to=to,
            template="verification_resolved",
            data={
                "subject_type": subject_type.lower(),
                "outcome": "verified" if approved else "not verified",
                "verifier_email": verifier_email,
                "reason": f"Reason: {reason}" if reason else "",
                "app_url": self.settings.frontend_origin,
            },
        )

    async def send_association_resolved(
        self,
        to: str,
        institute: str,
        approved: bool,
        reason: str | None = None,
    ) -> bool:
        return await self.send(
            to=to,
            template="association_resolved",
            data={
                "institute": institute,
                "outcome": "approved" if approved else "declined",
                "reason": f"Reason: {reason}" if reason else "",
                "app_url": self.settings.frontend_origin,
            },
        )
