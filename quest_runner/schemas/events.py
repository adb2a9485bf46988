"""Typed events streamed from a run to its subscribers."""

from __future__ import annotations

from typing import Annotated, Callable, Literal, Union

from pydantic import BaseModel, Field


class LogEvent(BaseModel):
    type: Literal["log"] = "log"
    message: str


class ScreenshotEvent(BaseModel):
    type: Literal["screenshot"] = "screenshot"
    image: str  # base64 jpeg


class UrlUpdateEvent(BaseModel):
    type: Literal["url_update"] = "url_update"
    url: str


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    text: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


class TokenUsageEvent(BaseModel):
    type: Literal["token_usage"] = "token_usage"
    input: int
    output: int


AgentEvent = Annotated[
    Union[LogEvent, ScreenshotEvent, UrlUpdateEvent, ResultEvent, ErrorEvent, DoneEvent, TokenUsageEvent],
    Field(discriminator="type"),
]

EventSink = Callable[[AgentEvent], None]
