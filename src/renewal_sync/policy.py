"""Action policy: one recommended follow-up per renewal record.

Each placement status maps to a base template (title, duration, preferred
start time, lead time). A record whose policy expires within
:data:`URGENCY_WINDOW_DAYS` days gets the urgent-expiry template instead; the
override replaces the status template wholesale rather than merging into it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, time, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from renewal_sync.records import RenewalRecord

URGENCY_WINDOW_DAYS = 14
DEFAULT_LEAD_DAYS = 5
URGENT_LEAD_DAYS = 1
CURRENCY_SYMBOL = "₹"


class PlacementStatus(StrEnum):
    """Placement statuses with a dedicated follow-up template."""

    QUOTE = "quote"
    SUBMITTED = "submitted"
    NO_RESPONSE = "no response"
    BOUND = "bound"
    RECEIVED = "received"
    DECLINATION = "declination"

    @classmethod
    def parse(cls, value: str | None) -> PlacementStatus | None:
        """Match a raw status cell case-insensitively; ``None`` if unknown."""
        if not value:
            return None
        normalized = " ".join(value.split()).lower()
        try:
            return cls(normalized)
        except ValueError:
            return None


@dataclass(frozen=True)
class ActionTemplate:
    """Static shape of a follow-up action before it is bound to a record."""

    kind: str
    title: str
    purpose: str
    action_items: tuple[str, ...]
    duration_minutes: int
    preferred_start: time
    lead_days: int
    color_id: str


_QUOTE = ActionTemplate(
    kind="quote_follow_up",
    title="Follow-up Call: {client}",
    purpose="Follow up on quote provided",
    action_items=(
        "Discuss quote details and coverage",
        "Address any questions or concerns",
        "Confirm client understanding of terms",
        "Set timeline for decision",
    ),
    duration_minutes=30,
    preferred_start=time(10, 0),
    lead_days=7,
    color_id="9",
)

_SUBMITTED = ActionTemplate(
    kind="carrier_check",
    title="Check Carrier Response: {client}",
    purpose="Follow up with carrier on submission",
    action_items=(
        "Check if carrier has reviewed submission",
        "Request status update",
        "Note any additional requirements",
        "Update internal tracking",
    ),
    duration_minutes=15,
    preferred_start=time(11, 0),
    lead_days=3,
    color_id="5",
)

_NO_RESPONSE = ActionTemplate(
    kind="first_follow_up",
    title="URGENT: First Follow-up: {client}",
    purpose="Immediate outreach required",
    action_items=(
        "Call client directly",
        "Email if no answer",
        "Try alternative contacts",
        "Document attempt",
    ),
    duration_minutes=20,
    preferred_start=time(9, 30),
    lead_days=1,
    color_id="11",
)

_POLICY_DOCUMENTS = ActionTemplate(
    kind="policy_documents",
    title="Send Policy Documents: {client}",
    purpose="Deliver final policy documents",
    action_items=(
        "Compile all policy documents",
        "Prepare summary of coverage",
        "Email complete package to client",
        "Confirm receipt",
    ),
    duration_minutes=45,
    preferred_start=time(14, 0),
    lead_days=1,
    color_id="10",
)

_DECLINATION = ActionTemplate(
    kind="explore_alternatives",
    title="Explore Alternatives: {client}",
    purpose="Explore alternative carriers",
    action_items=(
        "Review declination reason",
        "Identify alternative carriers",
        "Prepare new submission strategy",
        "Contact client with options",
    ),
    duration_minutes=40,
    preferred_start=time(15, 0),
    lead_days=DEFAULT_LEAD_DAYS,
    color_id="8",
)

URGENT_EXPIRY_TEMPLATE = ActionTemplate(
    kind="urgent_expiry",
    title="URGENT EXPIRY: {client} ({days} days left)",
    purpose="Policy expires in {days} days",
    action_items=(
        "CRITICAL: Verify renewal status immediately",
        "Confirm coverage continuity",
        "Escalate if not finalized",
        "Avoid coverage gap at all costs",
    ),
    duration_minutes=30,
    preferred_start=time(9, 30),
    lead_days=URGENT_LEAD_DAYS,
    color_id="11",
)

STATUS_TEMPLATES: dict[PlacementStatus, ActionTemplate] = {
    PlacementStatus.QUOTE: _QUOTE,
    PlacementStatus.SUBMITTED: _SUBMITTED,
    PlacementStatus.NO_RESPONSE: _NO_RESPONSE,
    PlacementStatus.BOUND: _POLICY_DOCUMENTS,
    PlacementStatus.RECEIVED: _POLICY_DOCUMENTS,
    PlacementStatus.DECLINATION: _DECLINATION,
}


class Action(BaseModel):
    """The single follow-up task derived for a renewal record."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str
    duration_minutes: int = Field(gt=0)
    preferred_start: time
    target_date: date
    client: str
    specialist: str
    kind: str
    color_id: str
    urgent: bool = False


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def days_to_expiry(expiry: date | None, today: date) -> int | None:
    """Whole days until *expiry*, rounded up; ``None`` without an expiry."""
    if expiry is None:
        return None
    return math.ceil((expiry - today) / timedelta(days=1))


def is_urgent(days_left: int | None) -> bool:
    """True when the policy expires within the urgency window (and not yet)."""
    return days_left is not None and 0 < days_left <= URGENCY_WINDOW_DAYS


def target_date_for(record: RenewalRecord, today: date) -> date | None:
    """Date on which the record's action should be scheduled.

    Anything expiring within the urgency window, or already expired, targets
    tomorrow so the client/day gate sees it on the same day as urgent work.
    """
    days_left = days_to_expiry(record.expiry_date, today)
    if days_left is None:
        return None
    if days_left <= URGENCY_WINDOW_DAYS:
        return today + timedelta(days=URGENT_LEAD_DAYS)

    template = STATUS_TEMPLATES.get(PlacementStatus.parse(record.status))
    lead_days = template.lead_days if template is not None else DEFAULT_LEAD_DAYS
    return today + timedelta(days=lead_days)


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------


def format_premium(amount: float) -> str:
    """Format *amount* with Indian digit grouping, e.g. ``12,34,567.5``."""
    sign = "-" if amount < 0 else ""
    rounded = round(abs(amount), 2)
    whole = int(rounded)
    fraction = f"{rounded - whole:.2f}"[2:].rstrip("0")

    digits = str(whole)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join([*groups, tail])

    text = f"{sign}{digits}"
    return f"{text}.{fraction}" if fraction else text


def build_description(
    record: RenewalRecord,
    purpose: str,
    action_items: tuple[str, ...] | list[str],
    *,
    today: date,
) -> str:
    """Render the multi-line event description for an action."""
    days_left = days_to_expiry(record.expiry_date, today)
    lines = [
        f"PURPOSE: {purpose}",
        "",
        "CLIENT INFORMATION:",
        f"Client: {record.client}",
        f"Coverage: {record.coverage}",
        f"Product Line: {record.product_line}",
        f"Carrier: {record.carrier}",
        f"Status: {record.status}",
        f"Premium: {CURRENCY_SYMBOL}{format_premium(record.premium)}",
        f"Assigned to: {record.specialist}",
        f"Placement ID: {record.placement_id}",
        "",
        "TIMELINE:",
        f"Expiry Date: {record.expiry_raw}",
        f"Days to Expiry: {days_left}",
        "",
        "ACTION ITEMS:",
    ]
    lines.extend(f"{index}. {item}" for index, item in enumerate(action_items, start=1))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def select_template(record: RenewalRecord, today: date) -> ActionTemplate | None:
    """Pick the template for *record*, applying the urgency override last."""
    days_left = days_to_expiry(record.expiry_date, today)
    if days_left is None or days_left <= 0:
        return None

    template = STATUS_TEMPLATES.get(PlacementStatus.parse(record.status))
    if is_urgent(days_left):
        template = URGENT_EXPIRY_TEMPLATE
    return template


def derive_action(
    record: RenewalRecord,
    target_date: date,
    *,
    today: date,
    specialist: str | None = None,
) -> Action | None:
    """Derive the single recommended action for *record* on *target_date*.

    Returns ``None`` when the record has no parseable expiry date, has
    already expired, or carries an unrecognized status outside the urgency
    window. ``specialist`` overrides the record's own assignee (the driver
    passes its grouping key so blank assignees land on the default pool).
    """
    template = select_template(record, today)
    if template is None:
        return None

    days_left = days_to_expiry(record.expiry_date, today)
    fields = {"client": record.client, "days": days_left}
    return Action(
        title=template.title.format(**fields),
        description=build_description(
            record,
            template.purpose.format(**fields),
            template.action_items,
            today=today,
        ),
        duration_minutes=template.duration_minutes,
        preferred_start=template.preferred_start,
        target_date=target_date,
        client=record.client,
        specialist=specialist if specialist is not None else record.specialist,
        kind=template.kind,
        color_id=template.color_id,
        urgent=template is URGENT_EXPIRY_TEMPLATE,
    )
