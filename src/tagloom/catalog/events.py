"""Event Catalog provider: standard marketing events and the custom event id pattern."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

EVENT_CATEGORIES: dict[str, str] = {
    "email": "Email",
    "form": "Forms",
    "page": "Page Views",
    "cta": "CTAs",
    "marketing": "Marketing",
    "custom": "Custom Events",
}

# Custom behavioral events are named pe<portal id>_<snake_case name>.
CUSTOM_EVENT_PATTERN = re.compile(r"^pe\d+_[a-z0-9_]+$")


@dataclass(frozen=True)
class EventType:
    """A trackable event an activity condition can test for."""

    id: str
    name: str
    category: str
    description: str = ""
    event_type_id: str | None = None  # native platform id, standard events only


STANDARD_EVENTS: tuple[EventType, ...] = (
    EventType("email_open", "Email Open", "email", "Contact opened a marketing email", "4-666440"),
    EventType(
        "email_click", "Email Click", "email", "Contact clicked a link in a marketing email", "4-666441"
    ),
    EventType("email_bounce", "Email Bounce", "email", "Email bounced (hard or soft)", "4-666288"),
    EventType("email_delivered", "Email Delivered", "email", "Email was successfully delivered"),
    EventType("email_spam_report", "Email Marked as Spam", "email", "Contact marked the email as spam"),
    EventType(
        "email_unsubscribe", "Email Unsubscribe", "email", "Contact unsubscribed from email"
    ),
    EventType("form_submission", "Form Submission", "form", "Contact submitted a form", "4-1639801"),
    EventType("form_view", "Form View", "form", "Contact viewed a form on a page"),
    EventType("page_view", "Page View", "page", "Contact viewed a page on the website", "4-1553668"),
    EventType("landing_page_view", "Landing Page View", "page", "Contact viewed a landing page"),
    EventType("cta_view", "CTA View", "cta", "Contact viewed a call-to-action", "4-1555804"),
    EventType("cta_click", "CTA Click", "cta", "Contact clicked a call-to-action", "4-1555805"),
    EventType("ad_interaction", "Ad Interaction", "marketing", "Contact interacted with an ad", "4-1553675"),
    EventType(
        "marketing_event_registration",
        "Marketing Event Registration",
        "marketing",
        "Contact registered for a marketing event",
        "4-68559",
    ),
    EventType(
        "marketing_event_attendance",
        "Marketing Event Attendance",
        "marketing",
        "Contact attended a marketing event",
    ),
)


def is_custom_event(event_id: str) -> bool:
    """Return True if *event_id* follows the ``pe<portal>_<name>`` custom event format."""
    return CUSTOM_EVENT_PATTERN.match(event_id) is not None


@dataclass(frozen=True)
class EventCatalog:
    """Known event types, looked up by id."""

    events: tuple[EventType, ...] = STANDARD_EVENTS
    _by_id: dict[str, EventType] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_id", {e.id: e for e in self.events})

    def get(self, event_id: str) -> EventType | None:
        return self._by_id.get(event_id)

    def is_known(self, event_id: str) -> bool:
        """True for catalog events and for well-formed custom event ids."""
        return event_id in self._by_id or is_custom_event(event_id)

    def by_category(self) -> dict[str, list[EventType]]:
        grouped: dict[str, list[EventType]] = {c: [] for c in EVENT_CATEGORIES}
        for event in self.events:
            grouped.setdefault(event.category, []).append(event)
        return grouped

    def display_name(self, event_id: str) -> str:
        """Human-readable name for *event_id*.

        Catalog events use their registered name. Custom events drop the
        portal prefix and title-case the rest
        (``pe1234567_account_login`` -> ``Account Login``). Anything else is
        returned unchanged.
        """
        event = self._by_id.get(event_id)
        if event is not None:
            return event.name
        if is_custom_event(event_id):
            words = event_id.split("_")[1:]
            return " ".join(w[:1].upper() + w[1:] for w in words if w)
        return event_id
