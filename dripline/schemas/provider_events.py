"""
Provider event schemas - one typed variant per delivery-provider event type.
Custom arguments we attach at send time (tenant_id, campaign_id, node_id,
outbound_message_id, dedupe_key) ride along on every event.
"""
from typing import Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class ProviderEventBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    email: str
    timestamp: int  # unix seconds
    event: str
    sg_event_id: str
    sg_message_id: Optional[str] = None
    smtp_id: Optional[str] = Field(default=None, alias="smtp-id")
    category: Optional[Union[list[str], str]] = None
    useragent: Optional[str] = None
    ip: Optional[str] = None

    # Custom arguments
    tenant_id: Optional[str] = None
    campaign_id: Optional[str] = None
    node_id: Optional[str] = None
    outbound_message_id: Optional[str] = None
    dedupe_key: Optional[str] = None

    # Element as received (after id fill-ins), archived verbatim
    raw: dict = Field(default_factory=dict, exclude=True)


class DeliveredEvent(ProviderEventBase):
    event: Literal["delivered"]
    response: Optional[str] = None


class BounceEvent(ProviderEventBase):
    event: Literal["bounce"]
    reason: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None  # hard, soft


class DeferredEvent(ProviderEventBase):
    event: Literal["deferred"]
    response: Optional[str] = None
    attempt: Optional[str] = None


class DroppedEvent(ProviderEventBase):
    event: Literal["dropped"]
    reason: Optional[str] = None


class OpenEvent(ProviderEventBase):
    event: Literal["open"]


class ClickEvent(ProviderEventBase):
    event: Literal["click"]
    url: Optional[str] = None


class SpamReportEvent(ProviderEventBase):
    event: Literal["spam_report"]


class UnsubscribeEvent(ProviderEventBase):
    event: Literal["unsubscribe"]


class GroupUnsubscribeEvent(ProviderEventBase):
    event: Literal["group_unsubscribe"]
    asm_group_id: Optional[int] = None


class GroupResubscribeEvent(ProviderEventBase):
    event: Literal["group_resubscribe"]
    asm_group_id: Optional[int] = None


ProviderEvent = Union[
    DeliveredEvent,
    BounceEvent,
    DeferredEvent,
    DroppedEvent,
    OpenEvent,
    ClickEvent,
    SpamReportEvent,
    UnsubscribeEvent,
    GroupUnsubscribeEvent,
    GroupResubscribeEvent,
]

EVENT_VARIANTS: dict[str, type[ProviderEventBase]] = {
    "delivered": DeliveredEvent,
    "bounce": BounceEvent,
    "deferred": DeferredEvent,
    "dropped": DroppedEvent,
    "open": OpenEvent,
    "click": ClickEvent,
    "spam_report": SpamReportEvent,
    "unsubscribe": UnsubscribeEvent,
    "group_unsubscribe": GroupUnsubscribeEvent,
    "group_resubscribe": GroupResubscribeEvent,
}
