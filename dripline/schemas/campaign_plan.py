"""
Campaign plan schema - the static graph a contact campaign walks.
Plans are stored as JSON on the campaign row (camelCase keys) and validated
here before the execution engine reads them.
"""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from dripline.utils.schedule import is_valid_iso_duration, parse_hhmm

STOP_TARGET = "stop"

PlanEventType = Literal[
    "delivered",
    "opened",
    "clicked",
    "bounced",
    "blocked",
    "dropped",
    "spamreport",
    "unsubscribed",
    "resubscribed",
    # synthetic, fired by timeout tasks
    "no_open",
    "no_click",
]

# Synthetic event -> the real event that cancels it
SYNTHETIC_COUNTERPARTS = {
    "no_open": "opened",
    "no_click": "clicked",
}


def _check_duration(value: str) -> str:
    if not is_valid_iso_duration(value):
        raise ValueError(f"ISO-8601 duration required, e.g. PT24H (got {value!r})")
    return value


IsoDuration = Annotated[str, AfterValidator(_check_duration)]


class PlanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuietHours(PlanModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, value: str) -> str:
        parse_hhmm(value)
        return value


class Transition(PlanModel):
    """
    An edge: on `on`, move to `to`. At most one of within/after is set; only
    synthetic no_* edges may omit both and fall back to the plan timers.
    """
    on: PlanEventType
    to: str = Field(min_length=1)
    within: Optional[IsoDuration] = None
    after: Optional[IsoDuration] = None

    @model_validator(mode="after")
    def _one_window(self) -> "Transition":
        if self.within is not None and self.after is not None:
            raise ValueError("Provide either `within` or `after`, not both.")
        if self.within is None and self.after is None and not self.is_synthetic:
            raise ValueError("`within` or `after` is required for non-timeout transitions.")
        return self

    @property
    def is_synthetic(self) -> bool:
        return self.on.startswith("no_")

    @property
    def window(self) -> Optional[str]:
        return self.after or self.within


class SendSchedule(PlanModel):
    delay: IsoDuration = "PT0S"
    at: Optional[datetime] = None


class _NodeBase(PlanModel):
    id: str = Field(min_length=1)
    channel: Literal["email", "sms"] = "email"
    transitions: list[Transition] = Field(default_factory=list)

    def find_transition(self, event_type: str) -> Optional[Transition]:
        # First matching rule wins
        for transition in self.transitions:
            if transition.on == event_type:
                return transition
        return None


class SendNode(_NodeBase):
    action: Literal["send"]
    subject: Optional[str] = None
    body: Optional[str] = None
    sender_identity_id: Optional[str] = Field(default=None, alias="senderIdentityId")
    schedule: SendSchedule = Field(default_factory=SendSchedule)


class WaitNode(_NodeBase):
    action: Literal["wait"]


class StopNode(_NodeBase):
    action: Literal["stop"]
    transitions: list[Transition] = Field(default_factory=list, max_length=0)


PlanNode = Annotated[Union[SendNode, WaitNode, StopNode], Field(discriminator="action")]


class PlanTimers(PlanModel):
    no_open_after: IsoDuration = "PT72H"
    no_click_after: IsoDuration = "PT24H"

    def for_event(self, event_type: str) -> str:
        return self.no_click_after if event_type == "no_click" else self.no_open_after


class PlanDefaults(PlanModel):
    timers: PlanTimers = Field(default_factory=PlanTimers)


class CampaignPlan(PlanModel):
    version: str = "1.0"
    timezone: str = Field(min_length=1)
    quiet_hours: Optional[QuietHours] = Field(default=None, alias="quietHours")
    defaults: PlanDefaults = Field(default_factory=PlanDefaults)
    sender_identity_id: Optional[str] = Field(default=None, alias="senderIdentityId")
    start_node_id: str = Field(alias="startNodeId", min_length=1)
    nodes: list[PlanNode] = Field(min_length=1)

    @field_validator("timezone")
    @classmethod
    def _iana(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown IANA timezone: {value!r}")
        return value

    @model_validator(mode="after")
    def _graph_resolves(self) -> "CampaignPlan":
        ids = [node.id for node in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError("Node ids must be unique within a plan")
        known = set(ids)
        if self.start_node_id not in known:
            raise ValueError(f"Start node {self.start_node_id} not found in plan")
        for node in self.nodes:
            for transition in node.transitions:
                if transition.to != STOP_TARGET and transition.to not in known:
                    raise ValueError(
                        f"Transition {node.id} -[{transition.on}]-> {transition.to} targets an unknown node"
                    )
        return self

    def get_node(self, node_id: Optional[str]) -> Optional[Union[SendNode, WaitNode, StopNode]]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def timeout_window(self, transition: Transition) -> str:
        """Delay before a synthetic edge fires: its own window, else the plan default."""
        return transition.window or self.defaults.timers.for_event(transition.on)

    def quiet_hours_dict(self) -> Optional[dict]:
        return self.quiet_hours.model_dump() if self.quiet_hours else None
