"""Email rendering with Jinja2.

Queue rows for the email channel carry either pre-rendered content
(``html``/``text``) or a ``template_id`` plus ``template_data`` that is
rendered here, right before the send.
"""

import logging
from dataclasses import dataclass
from typing import Any

from jinja2 import DictLoader, Environment, select_autoescape

from notifier.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class RenderedEmail:
    """Subject and bodies ready for the email sender."""

    subject: str
    html: str
    text: str


_BASE_HTML = """\
<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ title }}</title>
  </head>
  <body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #333;">
    <div style="max-width: 600px; margin: 0 auto;">
      <p>Hi {{ user_name }},</p>
      <h2>{{ heading }}</h2>
      <p><strong>{{ title }}</strong></p>
      <p>{{ message }}</p>
      {% if callout %}<p style="border-left: 4px solid #ff6600; padding-left: 16px;">{{ callout }}</p>{% endif %}
      {% if action_url %}<p><a href="{{ action_url }}">{{ action_text }}</a></p>{% endif %}
      <hr>
      <p style="font-size: 12px; color: #666;">
        You're receiving this notification based on your preferences.
        <a href="{{ base_url }}/protected/settings/notifications">Manage Notifications</a>
      </p>
    </div>
  </body>
</html>
"""

_BASE_TEXT = """\
Hi {{ user_name }},

{{ message }}

{% if action_url %}View details: {{ action_url }}

{% endif %}Manage notifications: {{ base_url }}/protected/settings/notifications
"""


@dataclass(frozen=True)
class EmailTemplate:
    """Per-notification-type wording and link pattern."""

    subject: str
    heading: str
    action_text: str = "View Details"
    action_path: str | None = None
    callout: str | None = None


# Subjects and paths are Jinja expressions over the template context
EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    "task_assigned": EmailTemplate(
        subject="New Task Assigned: {{ data.task_title or 'Task' }}",
        heading="New Task Assignment",
        action_text="View Task",
        action_path="/protected/tasks/{{ entity_id }}",
        callout="A new task has been assigned to you and needs your attention.",
    ),
    "task_comment": EmailTemplate(
        subject="New Comment: {{ data.task_title or 'Task' }}",
        heading="New Comment",
        action_text="View Comment",
        action_path="/protected/tasks/{{ data.task_id }}#comment-{{ entity_id }}",
    ),
    "comment_mention": EmailTemplate(
        subject="You were mentioned in: {{ data.task_title or 'Task' }}",
        heading="You Were Mentioned",
        action_text="View Mention",
        action_path="/protected/tasks/{{ data.task_id }}#comment-{{ entity_id }}",
        callout="Your attention is requested in this conversation.",
    ),
    "approval_requested": EmailTemplate(
        subject="Approval Required: {{ data.entity_title or 'Item' }}",
        heading="Approval Required",
        action_text="Review & Approve",
        action_path="/protected/approvals/{{ entity_id }}",
        callout="Your approval is needed to proceed with this request.",
    ),
    "approval_status_changed": EmailTemplate(
        subject="Approval Update: {{ data.entity_title or 'Request' }}",
        heading="Approval Status Update",
        action_text="View Update",
        action_path="/protected/approvals/{{ entity_id }}",
    ),
    "organization_added": EmailTemplate(
        subject="Welcome to {{ data.organization_name or 'Organization' }}",
        heading="Organization Invitation",
        action_text="Explore Organization",
        action_path="/protected/organizations/{{ entity_id }}",
    ),
    "project_added": EmailTemplate(
        subject="Added to Project: {{ data.project_name or 'Project' }}",
        heading="Project Invitation",
        action_text="View Project",
        action_path="/protected/projects/{{ entity_id }}",
    ),
    "task_updated": EmailTemplate(
        subject="Task Updated: {{ data.task_title or 'Task' }}",
        heading="Task Status Update",
        action_text="View Task",
        action_path="/protected/tasks/{{ entity_id }}",
    ),
    "task_unassigned": EmailTemplate(
        subject="Task Unassigned: {{ data.task_title or 'Task' }}",
        heading="Task Unassignment",
        action_text="View Tasks",
        action_path="/protected/tasks/{{ entity_id }}",
    ),
    "form_assigned": EmailTemplate(
        subject="Form Assigned: {{ data.form_title or 'Form' }}",
        heading="Form Assignment",
        action_text="Complete Form",
        action_path="/protected/forms/{{ entity_id }}",
        callout="A form has been assigned to you for completion.",
    ),
    "form_unassigned": EmailTemplate(
        subject="Form Unassigned: {{ data.form_title or 'Form' }}",
        heading="Form Unassignment",
        action_text="View Forms",
        action_path="/protected/forms/{{ entity_id }}",
    ),
    "entity_assigned": EmailTemplate(
        subject="New Assignment: {{ data.entity_title or 'Item' }}",
        heading="New Assignment",
        action_text="View Assignment",
        action_path="/protected/{{ entity_type }}s/{{ entity_id }}",
    ),
    "system": EmailTemplate(
        subject="System Notice: {{ title }}",
        heading="System Notification",
    ),
}

DEFAULT_TEMPLATE = EmailTemplate(
    subject="{{ title }}",
    heading="Notification",
    action_path="/protected/{{ entity_type }}s/{{ entity_id }}",
)


class EmailRenderer:
    """Renders queued email payloads into subject/html/text."""

    def __init__(self, base_url: str | None = None) -> None:
        self.base_url = (base_url or get_settings().APP_URL).rstrip("/")
        self.env = Environment(
            loader=DictLoader({"base.html": _BASE_HTML, "base.txt": _BASE_TEXT}),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        # Subjects and link paths are plain text, never HTML-escaped
        self.text_env = Environment(autoescape=False)

    def render(self, payload: dict[str, Any], to: str) -> RenderedEmail:
        """Render an email queue payload.

        Args:
            payload: Email payload from the queue row
            to: Destination address (fallback for the greeting name)

        Returns:
            RenderedEmail
        """
        if payload.get("html") or payload.get("text"):
            subject = payload.get("subject") or ""
            html = payload.get("html") or payload.get("text") or ""
            text = payload.get("text") or payload.get("subject") or ""
            return RenderedEmail(subject=subject, html=html, text=text)

        template_data = payload.get("template_data") or {}
        template_id = (
            template_data.get("notification_type")
            or payload.get("template_id")
            or "default"
        )
        template = EMAIL_TEMPLATES.get(template_id, DEFAULT_TEMPLATE)

        user_name = (
            payload.get("to_name")
            or template_data.get("user_name")
            or to.split("@")[0]
        )
        context = {
            "title": template_data.get("notification_title") or payload.get("subject") or "",
            "message": template_data.get("notification_message") or "",
            "entity_type": template_data.get("entity_type"),
            "entity_id": template_data.get("entity_id"),
            "data": template_data.get("notification_data") or {},
            "user_name": user_name,
            "base_url": self.base_url,
        }

        subject = self.text_env.from_string(template.subject).render(**context)
        action_url = self._action_url(template, context)

        full_context = {
            **context,
            "heading": template.heading,
            "callout": template.callout,
            "action_url": action_url,
            "action_text": template.action_text,
        }
        html = self.env.get_template("base.html").render(**full_context)
        text = self.env.get_template("base.txt").render(**full_context)

        logger.debug(
            "Rendered email",
            extra={"template_id": template_id, "subject": subject},
        )
        return RenderedEmail(subject=subject, html=html, text=text)

    def _action_url(self, template: EmailTemplate, context: dict[str, Any]) -> str | None:
        """Build the call-to-action link, or None when the ids it needs are missing."""
        data = context["data"]
        if data.get("action_url"):
            return data["action_url"]
        if not template.action_path or not context["entity_id"]:
            return None
        if "entity_type" in template.action_path and not context["entity_type"]:
            return None
        path = self.text_env.from_string(template.action_path).render(**context)
        return f"{self.base_url}{path}"
