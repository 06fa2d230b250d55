"""Email delivery for notifications.

Transports:
- SendGridTransport: SendGrid v3 Web API over HTTPS (httpx)
- SmtpTransport: plain SMTP with optional STARTTLS
- LoggingTransport: writes messages to the log (no mail configured)
- FallbackTransport: tries a primary transport, then a fallback

EmailNotifier renders the notification emails and sends them through one
transport. It is built once at startup (`build_notifier`) and injected into
request handlers; its send_* methods return a NotificationResult and never
raise.
"""
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from html import escape
from typing import Optional
from uuid import uuid4

import httpx

from .config import Settings
from .notifications import Contact, NotificationResult, ProjectSummary, TicketSummary

logger = logging.getLogger("ticketflow-core.mailer")


PRIORITY_COLORS = {
    "LOW": "#28a745",
    "MEDIUM": "#ffc107",
    "HIGH": "#dc3545",
}

STATUS_COLORS = {
    "OPEN": "#007bff",
    "IN_PROGRESS": "#ffc107",
    "RESOLVED": "#28a745",
    "CLOSED": "#6c757d",
}

DEFAULT_COLOR = "#6c757d"


class EmailDeliveryError(Exception):
    """Raised by a transport when a message could not be handed off."""

    def __init__(self, message: str, transport: str):
        super().__init__(message)
        self.transport = transport


class OutgoingEmail:
    """A rendered email ready for a transport."""

    def __init__(self, to: str, subject: str, html: str, text: Optional[str] = None):
        self.to = to
        self.subject = subject
        self.html = html
        self.text = text or subject

    def __repr__(self) -> str:
        return f"<OutgoingEmail to={self.to} subject={self.subject!r}>"


class EmailTransport:
    """Base transport. `send` returns a message id or raises EmailDeliveryError."""

    name = "base"

    def send(self, email: OutgoingEmail) -> str:
        raise NotImplementedError


class LoggingTransport(EmailTransport):
    """Logs messages instead of sending them."""

    name = "log"

    def send(self, email: OutgoingEmail) -> str:
        message_id = f"log-{uuid4()}"
        logger.info(f"Email (not sent, no transport configured) to {email.to}: {email.subject}")
        return message_id


class SendGridTransport(EmailTransport):
    """SendGrid v3 Web API transport."""

    name = "sendgrid"

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str,
        base_url: str = "https://api.sendgrid.com",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def send(self, email: OutgoingEmail) -> str:
        payload = {
            "personalizations": [{"to": [{"email": email.to}]}],
            "from": {"email": self.sender_email, "name": self.sender_name},
            "subject": email.subject,
            "content": [
                {"type": "text/plain", "value": email.text},
                {"type": "text/html", "value": email.html},
            ],
        }
        try:
            response = self.client.post(
                "/v3/mail/send",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = _sendgrid_error_detail(e.response)
            raise EmailDeliveryError(f"SendGrid rejected message: {detail}", self.name) from e
        except httpx.RequestError as e:
            raise EmailDeliveryError(f"SendGrid request failed: {e}", self.name) from e

        return response.headers.get("X-Message-Id", f"sendgrid-{uuid4()}")


def _sendgrid_error_detail(response: httpx.Response) -> str:
    """Extract a readable error from a SendGrid error body."""
    try:
        errors = response.json().get("errors", [])
    except ValueError:
        return f"HTTP {response.status_code}"
    for error in errors:
        if error.get("field") == "from.email":
            return "sender email not verified"
    messages = [error.get("message", "") for error in errors if error.get("message")]
    return "; ".join(messages) or f"HTTP {response.status_code}"


class SmtpTransport(EmailTransport):
    """SMTP transport (STARTTLS when enabled)."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        sender_email: str,
        sender_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, email: OutgoingEmail) -> str:
        message = EmailMessage()
        message["From"] = formataddr((self.sender_name, self.sender_email))
        message["To"] = email.to
        message["Subject"] = email.subject
        message["Message-ID"] = make_msgid()
        message.set_content(email.text)
        message.add_alternative(email.html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP delivery failed: {e}", self.name) from e

        return message["Message-ID"]


class FallbackTransport(EmailTransport):
    """Send through `primary`; on failure retry once through `fallback`."""

    name = "fallback"

    def __init__(self, primary: EmailTransport, fallback: EmailTransport):
        self.primary = primary
        self.fallback = fallback

    def send(self, email: OutgoingEmail) -> str:
        try:
            return self.primary.send(email)
        except EmailDeliveryError as e:
            logger.warning(f"{self.primary.name} failed for {email.to} ({e}); falling back to {self.fallback.name}")
        return self.fallback.send(email)


def build_transport(settings: Settings) -> EmailTransport:
    """
    Choose a transport from configuration.

    SendGrid is primary when an API key is set; SMTP is used alone or as the
    SendGrid fallback when a host is set; otherwise messages are only logged.
    """
    sendgrid = None
    smtp = None

    if settings.sendgrid_api_key:
        sendgrid = SendGridTransport(
            api_key=settings.sendgrid_api_key,
            sender_email=settings.email_from,
            sender_name=settings.email_from_name,
            base_url=settings.sendgrid_base_url,
            timeout=settings.email_timeout_seconds,
        )

    if settings.smtp_host:
        smtp = SmtpTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender_email=settings.email_from,
            sender_name=settings.email_from_name,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.email_timeout_seconds,
        )

    if sendgrid and smtp:
        logger.info("Email: SendGrid Web API with SMTP fallback")
        return FallbackTransport(sendgrid, smtp)
    if sendgrid:
        logger.info("Email: SendGrid Web API")
        return sendgrid
    if smtp:
        logger.info("Email: SMTP")
        return smtp

    logger.warning("Email: no transport configured, notifications will only be logged")
    return LoggingTransport()


def _layout(heading: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #333;">{heading}</h2>'
        f"{body}"
        "<p>Best regards,<br>The TicketFlow Team</p>"
        "</div>"
    )


def _details(rows: list[tuple[str, str]]) -> str:
    lines = "".join(f"<p><strong>{label}:</strong> {value}</p>" for label, value in rows)
    return (
        '<div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">'
        f"{lines}</div>"
    )


def _colored(value: str, palette: dict[str, str]) -> str:
    return f'<span style="color: {palette.get(value, DEFAULT_COLOR)}">{escape(value)}</span>'


class EmailNotifier:
    """Renders notification emails and sends them through a transport."""

    def __init__(self, transport: EmailTransport, frontend_url: str = ""):
        self.transport = transport
        self.frontend_url = frontend_url

    def _send(self, emails: list[OutgoingEmail]) -> NotificationResult:
        result = NotificationResult(success=True)
        for email in emails:
            try:
                result.message_ids.append(self.transport.send(email))
                logger.info(f"Email sent to {email.to}: {email.subject}")
            except EmailDeliveryError as e:
                logger.error(f"Email to {email.to} failed via {e.transport}: {e}")
                result.success = False
                result.errors.append(f"{email.to}: {e}")
        return result

    def send_welcome(self, user: Contact) -> NotificationResult:
        html = _layout(
            "Welcome to TicketFlow!",
            f"<p>Hi {escape(user.name)},</p>"
            "<p>Your account has been created.</p>"
            + _details([
                ("Email", escape(user.email)),
                ("Role", escape(user.role or "USER")),
            ])
            + "<p>You can now start creating projects and tracking tickets.</p>",
        )
        return self._send([OutgoingEmail(user.email, "Welcome to TicketFlow", html)])

    def send_assignment(self, ticket: TicketSummary, assignee: Contact, actor: Contact) -> NotificationResult:
        due = ticket.due_date.strftime("%Y-%m-%d") if ticket.due_date else "Not set"
        html = _layout(
            "New Ticket Assignment",
            f"<p>Hi {escape(assignee.name)},</p>"
            "<p>A ticket has been assigned to you.</p>"
            + _details([
                ("Title", escape(ticket.title)),
                ("Description", escape(ticket.description)),
                ("Priority", _colored(ticket.priority, PRIORITY_COLORS)),
                ("Status", escape(ticket.status)),
                ("Assigned by", escape(actor.name)),
                ("Due Date", due),
            ]),
        )
        return self._send([OutgoingEmail(assignee.email, f"Ticket Assigned: {ticket.title}", html)])

    def send_status_update(
        self,
        ticket: TicketSummary,
        actor: Contact,
        recipients: list[Contact],
    ) -> NotificationResult:
        html = _layout(
            "Ticket Status Updated",
            "<p>A ticket you're involved with has been updated.</p>"
            + _details([
                ("Title", escape(ticket.title)),
                ("New Status", _colored(ticket.status, STATUS_COLORS)),
                ("Priority", escape(ticket.priority)),
                ("Updated by", escape(actor.name)),
            ]),
        )
        subject = f"Ticket Status Update: {ticket.title}"
        return self._send([OutgoingEmail(r.email, subject, html) for r in recipients])

    def send_project_invitation(
        self,
        project: ProjectSummary,
        invitee: Contact,
        actor: Contact,
    ) -> NotificationResult:
        html = _layout(
            "Project Invitation",
            f"<p>Hi {escape(invitee.name)},</p>"
            "<p>You have been added to a project.</p>"
            + _details([
                ("Name", escape(project.name)),
                ("Description", escape(project.description)),
                ("Invited by", escape(actor.name)),
            ])
            + "<p>You can now access this project and start working on tickets!</p>",
        )
        return self._send([OutgoingEmail(invitee.email, f"Project Invitation: {project.name}", html)])


def build_notifier(settings: Settings) -> EmailNotifier:
    """Create the process-wide notifier from configuration."""
    return EmailNotifier(build_transport(settings), frontend_url=settings.frontend_url)
