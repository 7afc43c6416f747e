import os
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.features.notifications.schemas.notification import EmailContent, NotificationKind
from app.platform.config import settings

current_dir = os.path.dirname(os.path.abspath(__file__))
template_dir = os.path.join(current_dir, "../templates")

if not os.path.exists(template_dir):
    template_dir = os.path.join(os.getcwd(), "app/features/notifications/templates")

env = Environment(
    loader=FileSystemLoader(template_dir),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
)


def _issues(count: int) -> str:
    return f"{count} issue{'' if count == 1 else 's'} found"


def email_subject(kind: NotificationKind, context: Dict[str, Any]) -> str:
    if kind == NotificationKind.SCAN_COMPLETE:
        return f"Your accessibility scan is complete - {_issues(context['issue_count'])}"
    if kind == NotificationKind.SCAN_FAILED:
        return "Your accessibility scan failed"
    if kind == NotificationKind.BATCH_COMPLETE:
        return f"Batch scan complete: {context['total_urls']} URLs scanned - {_issues(context['issue_count'])}"
    return f"AI-Enhanced Scan Complete - {_issues(context['issue_count'])}"


def render_email(kind: NotificationKind, context: Dict[str, Any]) -> EmailContent:
    """Render the subject line, HTML and plain text bodies for one notification kind."""
    context = {"app_name": settings.APP_NAME, **context}
    return EmailContent(
        subject=email_subject(kind, context),
        html=env.get_template(f"{kind.value}.html").render(**context),
        text=env.get_template(f"{kind.value}.txt").render(**context),
    )
