"""
Insight and chat value types shared by the insight engine and the chat service.
Keeps business structures separate from transport / persistence concerns.
"""

from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class InsightContent(BaseModel):
    """What the model is asked to return; validated before it is trusted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    main_insight: str = Field(min_length=1)
    key_points: List[str] = Field(default_factory=list)
    anomaly: Optional[str] = None
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("anomaly", mode="before")
    @classmethod
    def _blank_anomaly_is_none(cls, v):
        if v is None:
            return None
        if not isinstance(v, str):
            return str(v)
        return v.strip() or None


class Insight(InsightContent):
    """A normalized insight, tagged with the backend that actually produced it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    llm_provider: str
    timestamp: str
    tokens_used: Optional[int] = None
    response_time_ms: Optional[int] = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class ChatReply:
    content: str
    provider: str
