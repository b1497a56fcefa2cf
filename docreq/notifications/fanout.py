"""
Notification fan-out: one event becomes one notification record per
recipient.

Call sites supply only the audience policy and the event; titles and
messages come from the Jinja2 templates below. Inserts are independent,
so one failing recipient never stops the others and never fails the
calling workflow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from jinja2 import BaseLoader, Environment

from docreq.notifications.realtime import EventHub, notifications_topic
from docreq.store.database import Database
from docreq.store.directory import OrganizationDirectory
from docreq.store.models import Notification, Request, UserRole

logger = logging.getLogger(__name__)

Recipients = Union[Iterable[Optional[str]], Callable[[], Iterable[Optional[str]]]]


# event key -> (title, message template)
EVENT_TEMPLATES: dict[str, tuple[str, str]] = {
    "new_request": (
        "New Request",
        "A new request {{ request.reference_number }} has been submitted: {{ request.subject }}",
    ),
    "request_updated": (
        "Request Updated",
        "Request {{ request.reference_number }} has been updated"
        "{% if changed %} ({{ changed | join(', ') }}){% endif %}.",
    ),
    "status_updated": (
        "Request Status Updated",
        "Request {{ request.reference_number }} status changed from "
        "{{ old_status.label }} to {{ request.status.label }}.",
    ),
    "request_completed": (
        "Request Completed",
        "Request {{ request.reference_number }} has been completed. "
        "It is scheduled for deletion on {{ request.deletion_date.strftime('%B %d, %Y') }}.",
    ),
    "request_deleted": (
        "Request Deleted",
        "Request {{ request.reference_number }} ({{ request.subject }}) has been deleted"
        "{% if reason %}: {{ reason }}{% endif %}.",
    ),
    "files_uploaded": (
        "New Files Uploaded",
        "{{ count }} {% if is_response %}response{% else %}request{% endif %} "
        "file{{ 's' if count != 1 else '' }} uploaded to request {{ request.reference_number }}.",
    ),
    "new_comment": (
        "New Comment",
        "New comment on request {{ request.reference_number }}: {{ excerpt }}",
    ),
    "request_assigned": (
        "Request Assigned",
        "Request {{ request.reference_number }} has been assigned to you.",
    ),
    "deletion_reminder": (
        "Deletion Reminder",
        "Request {{ request.reference_number }} and its files will be deleted on "
        "{{ request.deletion_date.strftime('%B %d, %Y') }}.",
    ),
}


@dataclass
class FanoutResult:
    """Outcome of one fan-out. ``failed`` maps recipient to error text.

    ``audience_error`` is set when the recipient list itself could not be
    resolved, in which case nobody was notified.
    """

    title: str
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    audience_error: Optional[str] = None

    @property
    def recipients(self) -> list[str]:
        return self.delivered + list(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed and self.audience_error is None


def unique_recipients(recipients: Iterable[Optional[str]]) -> list[str]:
    """Drop blanks and repeats, keeping first-seen order."""
    seen: set[str] = set()
    ordered: list[str] = []
    for user_id in recipients:
        if not user_id or user_id in seen:
            continue
        seen.add(user_id)
        ordered.append(user_id)
    return ordered


class NotificationService:
    """
    Create per-recipient notifications and push them to live subscribers.

    Usage:
        service = NotificationService(db, directory, hub)
        audience = service.audience(request, actor_id="u1")
        service.notify_event("request_updated", audience, request=request)
    """

    def __init__(
        self,
        db: Database,
        directory: OrganizationDirectory,
        hub: Optional[EventHub] = None,
    ) -> None:
        self.db = db
        self.directory = directory
        self.hub = hub
        self._jinja_env = Environment(loader=BaseLoader(), autoescape=False)

    # ---- Audience ----

    def audience(
        self,
        request: Request,
        actor_id: Optional[str],
        include_creator: bool = True,
        exclude: Iterable[str] = (),
    ) -> list[str]:
        """Creator plus sender-organization members, minus the actor and ``exclude``."""
        candidates: list[Optional[str]] = []
        if include_creator:
            candidates.append(request.created_by)
        candidates.extend(self.directory.members_of(request.sender))
        excluded = set(exclude)
        if actor_id:
            excluded.add(actor_id)
        return [u for u in unique_recipients(candidates) if u not in excluded]

    def organization_audience(self, org_id: str, actor_id: Optional[str]) -> list[str]:
        return [u for u in self.directory.members_of(org_id) if u != actor_id]

    def role_audience(
        self, roles: Union[UserRole, str, Iterable[Union[UserRole, str]]], actor_id: Optional[str] = None
    ) -> list[str]:
        """Active users holding any of ``roles``, minus the actor."""
        if isinstance(roles, (UserRole, str)):
            roles = [roles]
        return [u for u in self.directory.users_with_roles(roles) if u != actor_id]

    # ---- Rendering ----

    def render(self, event: str, **context: Any) -> tuple[str, str]:
        try:
            title, template_str = EVENT_TEMPLATES[event]
        except KeyError:
            raise ValueError(
                f"Unknown notification event '{event}'. Known: {sorted(EVENT_TEMPLATES)}"
            ) from None
        message = self._jinja_env.from_string(template_str).render(**context)
        return title, message

    # ---- Fan-out ----

    def notify(
        self,
        recipients: Recipients,
        title: str,
        message: str,
        related_request_id: Optional[str] = None,
    ) -> FanoutResult:
        """Insert one notification per recipient.

        ``recipients`` may be a callable returning them; a lookup that
        raises is logged and yields an empty fan-out.
        """
        result = FanoutResult(title=title)
        try:
            targets = unique_recipients(recipients() if callable(recipients) else recipients)
        except Exception as e:
            logger.error("Fan-out '%s': could not resolve recipients: %s", title, e)
            result.audience_error = str(e)
            return result

        for user_id in targets:
            try:
                notification = self._insert(user_id, title, message, related_request_id)
            except Exception as e:
                logger.warning("Notification '%s' for user %s failed: %s", title, user_id, e)
                result.failed[user_id] = str(e)
                continue
            result.delivered.append(user_id)
            self._push(notification)

        if result.failed:
            logger.warning(
                "Fan-out '%s': %d delivered, %d failed",
                title, len(result.delivered), len(result.failed),
            )
        else:
            logger.debug("Fan-out '%s' delivered to %d recipient(s)", title, len(result.delivered))
        return result

    def notify_event(
        self,
        event: str,
        recipients: Recipients,
        related_request_id: Optional[str] = None,
        **context: Any,
    ) -> FanoutResult:
        title, message = self.render(event, **context)
        return self.notify(recipients, title, message, related_request_id)

    def notify_roles(
        self,
        roles: Union[UserRole, str, Iterable[Union[UserRole, str]]],
        title: str,
        message: str,
        related_request_id: Optional[str] = None,
    ) -> FanoutResult:
        """Notify every active user holding one of ``roles``."""
        return self.notify(lambda: self.role_audience(roles), title, message, related_request_id)

    def _insert(
        self,
        user_id: str,
        title: str,
        message: str,
        related_request_id: Optional[str],
    ) -> Notification:
        with self.db.session() as session:
            notification = Notification(
                user_id=user_id,
                title=title,
                message=message,
                related_request_id=related_request_id,
                is_read=False,
            )
            session.add(notification)
            session.flush()
            session.refresh(notification)
            return notification

    def _push(self, notification: Notification) -> None:
        if self.hub is None:
            return
        self.hub.publish(
            notifications_topic(notification.user_id),
            {"event": "notification.created", "notification": notification.to_dict()},
        )
