"""
Event normalizer - parses a provider webhook body into typed events and maps
provider event types onto our internal message event vocabulary.

Only whole-payload problems raise (bad JSON, not an array, empty, nothing
usable). A single bad element is logged and dropped so one malformed event
never costs the rest of the batch.
"""
import json
import logging
import math
import random
import string
import time
from typing import Any, NamedTuple, Optional

from pydantic import ValidationError

from dripline.errors import (
    WebhookError,
    EMPTY_PAYLOAD,
    INVALID_JSON,
    INVALID_PAYLOAD_FORMAT,
    NO_RECORDABLE_EVENTS,
)
from dripline.schemas.provider_events import EVENT_VARIANTS, ProviderEvent, ProviderEventBase

logger = logging.getLogger(__name__)


class EventMapping(NamedTuple):
    internal_type: str
    recordable: bool


EVENT_NORMALIZATION_MAP: dict[str, EventMapping] = {
    "delivered": EventMapping("delivered", True),
    "bounce": EventMapping("bounced", True),
    "deferred": EventMapping("deferred", False),  # temporary, retried by the provider
    "dropped": EventMapping("dropped", True),
    "open": EventMapping("opened", True),
    "click": EventMapping("clicked", True),
    "spam_report": EventMapping("spamreport", True),
    "unsubscribe": EventMapping("unsubscribed", True),
    "group_unsubscribe": EventMapping("unsubscribed", True),
    "group_resubscribe": EventMapping("resubscribed", True),
}

# Known provider events we never record and never warn about
IGNORED_EVENT_TYPES = frozenset({"processed"})

REQUIRED_FIELDS = ("email", "timestamp", "event")
CUSTOM_ARG_FIELDS = ("tenant_id", "campaign_id", "node_id", "outbound_message_id", "dedupe_key")

UNKNOWN_MESSAGE_ID = "unknown"


def generate_event_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"generated_{int(time.time() * 1000)}_{suffix}"


def get_mapping(provider_type: str) -> Optional[EventMapping]:
    return EVENT_NORMALIZATION_MAP.get(provider_type)


def normalize_event_type(provider_type: str) -> str:
    mapping = EVENT_NORMALIZATION_MAP.get(provider_type)
    return mapping.internal_type if mapping else provider_type


def is_recordable(provider_type: str) -> bool:
    mapping = EVENT_NORMALIZATION_MAP.get(provider_type)
    return bool(mapping and mapping.recordable)


def _valid_timestamp(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def validate_event(element: Any) -> Optional[ProviderEvent]:
    """
    Validate one payload element. Returns a typed event or None when the
    element should be dropped (ignored type, unknown type, bad fields).
    """
    if not isinstance(element, dict):
        logger.warning("Event validation failed: not an object")
        return None

    event_type = element.get("event")
    if not isinstance(event_type, str):
        logger.warning("Event validation failed: event type is not a string")
        return None
    if event_type in IGNORED_EVENT_TYPES:
        return None

    variant = EVENT_VARIANTS.get(event_type)
    if variant is None:
        logger.warning("Unknown provider event type: %s", event_type)
        return None

    for field in REQUIRED_FIELDS:
        if not element.get(field):
            logger.warning("Event missing required field: %s (type=%s)", field, event_type)
            return None

    email = element["email"]
    if not isinstance(email, str) or "@" not in email:
        logger.warning("Invalid email address in %s event", event_type)
        return None

    if not _valid_timestamp(element["timestamp"]):
        logger.warning("Invalid timestamp in %s event: %r", event_type, element["timestamp"])
        return None

    # Never mutate the caller's payload
    data = dict(element)
    if not data.get("sg_event_id"):
        data["sg_event_id"] = generate_event_id()
        logger.debug("Generated missing sg_event_id for %s event", event_type)
    if not data.get("sg_message_id") and data.get("smtp-id"):
        data["sg_message_id"] = data["smtp-id"]

    fields = dict(data)
    fields["timestamp"] = int(data["timestamp"])
    for key in CUSTOM_ARG_FIELDS:
        if fields.get(key) is not None:
            fields[key] = str(fields[key])

    try:
        return variant.model_validate({**fields, "raw": data})
    except ValidationError as e:
        logger.warning(
            "Event validation failed for %s: %d error(s)", event_type, e.error_count(),
        )
        return None


def parse_and_validate(raw_body: bytes) -> list[ProviderEvent]:
    """
    Parse a webhook body into validated provider events.

    Raises WebhookError (400) for undecodable JSON, a non-array body, an
    empty array, or an array where no element survives validation.
    """
    try:
        parsed = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise WebhookError(
            "Failed to parse webhook payload JSON", INVALID_JSON, 400,
            {"reason": str(e)},
        )

    if not isinstance(parsed, list):
        raise WebhookError(
            "Webhook payload must be an array of events", INVALID_PAYLOAD_FORMAT, 400,
        )
    if not parsed:
        raise WebhookError("No events found in webhook payload", EMPTY_PAYLOAD, 400)

    events: list[ProviderEvent] = []
    invalid_count = 0
    for element in parsed:
        event = validate_event(element)
        if event is not None:
            events.append(event)
            continue
        kind = element.get("event") if isinstance(element, dict) else None
        if not (isinstance(kind, str) and kind in IGNORED_EVENT_TYPES):
            invalid_count += 1

    skipped_count = len(parsed) - len(events)
    logger.info(
        "Webhook payload validation completed: total=%d valid=%d skipped=%d invalid=%d",
        len(parsed), len(events), skipped_count, invalid_count,
    )

    if not events:
        if invalid_count:
            message = (
                f"No recordable events found in payload - {invalid_count} invalid events, "
                f"{skipped_count - invalid_count} non-recordable events"
            )
        else:
            message = "No recordable events found in payload - all events were non-recordable types"
        raise WebhookError(
            message, NO_RECORDABLE_EVENTS, 400,
            {
                "totalEvents": len(parsed),
                "invalidEvents": invalid_count,
                "skippedEvents": skipped_count,
            },
        )

    return events


def extract_tenant_id(events: list[ProviderEventBase]) -> Optional[str]:
    """First non-empty tenant_id carried by any event in the batch."""
    for event in events:
        if event.tenant_id:
            return event.tenant_id
    return None


def derive_message_id(event: ProviderEventBase) -> str:
    """Message id for a normalized event: ours first, then the provider's."""
    return (
        event.outbound_message_id
        or event.sg_message_id
        or event.smtp_id
        or UNKNOWN_MESSAGE_ID
    )
