"""Private message contract.

Recipients are distinct user ids and never include the author.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.config.policy import DEFAULT_MESSAGE_KIND


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class PrivateMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message_id: str = Field(default_factory=new_message_id, pattern=r"^msg_[A-Za-z0-9_-]{6,64}$")
    kind: str = Field(default=DEFAULT_MESSAGE_KIND, min_length=1, max_length=64)
    author_id: int = Field(ge=1)
    recipient_ids: list[int] = Field(min_length=1, max_length=50)
    subject: str = Field(min_length=1, max_length=255)
    body: str = Field(min_length=1, max_length=10000)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("subject", "body")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("recipient_ids")
    @classmethod
    def validate_recipients(cls, value: list[int]) -> list[int]:
        if any(r < 1 for r in value):
            raise ValueError("recipient ids must be >= 1")
        if len(set(value)) != len(value):
            raise ValueError("recipient ids must be distinct")
        return value

    @field_validator("created_at")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def validate_author_not_recipient(self) -> "PrivateMessage":
        if self.author_id in self.recipient_ids:
            raise ValueError("author must not be a recipient")
        return self

    def is_participant(self, user_id: int) -> bool:
        return user_id == self.author_id or user_id in self.recipient_ids
