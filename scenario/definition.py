"""Scenario DSL — describe listeners and sends to replay against a bus."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from core.models import DEFAULT_SEPARATOR, DeliveryMode


class ListenerKind(str, Enum):
    SYNC  = "sync"    # plain function
    ASYNC = "async"   # coroutine function, may sleep before finishing


class ListenerSpec(BaseModel):
    id: str
    channels: list[str]
    mode: DeliveryMode = DeliveryMode.BLOCKING
    kind: ListenerKind = ListenerKind.SYNC
    delay: float = Field(default=0.0, ge=0.0)   # seconds, async listeners only
    fail: bool = False
    once: bool = False

    @field_validator("channels", mode="before")
    @classmethod
    def single_channel(cls, value: Any) -> Any:
        return [value] if isinstance(value, str) else value

    @model_validator(mode="after")
    def check_fields(self):
        if not self.channels:
            raise ValueError(f"Listener '{self.id}': at least one channel is required")
        if self.delay and self.kind != ListenerKind.ASYNC:
            raise ValueError(f"Listener '{self.id}': only async listeners can set 'delay'")
        return self


class SendSpec(BaseModel):
    channel: str
    data: Any = None
    # True → awaited send_and_wait, False → send_later
    wait: bool = True


class ScenarioDefinition(BaseModel):
    name: str
    description: str = ""
    separator: str = Field(default=DEFAULT_SEPARATOR, min_length=1)
    listeners: list[ListenerSpec] = []
    sends: list[SendSpec]
    settle: float = Field(default=0.1, ge=0.0)   # seconds to wait after the last send

    @model_validator(mode="after")
    def validate_scenario(self):
        if not self.sends:
            raise ValueError("Scenario must contain at least one send")
        seen: set[str] = set()
        for spec in self.listeners:
            if spec.id in seen:
                raise ValueError(f"Duplicate listener id '{spec.id}'")
            seen.add(spec.id)
        return self
