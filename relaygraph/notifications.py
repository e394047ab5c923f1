"""Incremental progress notifications.

Text and reasoning fragments are pushed to an optional sink the moment they
are decoded. The sink is a plain callable, so a consumer can forward them to
a UI, a queue or a list; with no sink the turn behaves the same.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Literal

from pydantic import BaseModel, ConfigDict


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["content_chunk", "reasoning_chunk"]
    message_id: str
    content: str


NotificationSink = Callable[[Notification], None]
