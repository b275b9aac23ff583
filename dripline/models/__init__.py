"""
Database models - import all models here so Alembic can discover them.
"""
from dripline.models.webhook_delivery import WebhookDelivery
from dripline.models.message_event import MessageEvent
from dripline.models.outbound_message import OutboundMessage
from dripline.models.contact_campaign import ContactCampaign
from dripline.models.campaign_transition import CampaignTransition
from dripline.models.task_queue import TaskQueue

__all__ = [
    "WebhookDelivery",
    "MessageEvent",
    "OutboundMessage",
    "ContactCampaign",
    "CampaignTransition",
    "TaskQueue",
]
