"""Prompt assistance Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class PromptRequest(BaseModel):
    prompt: str = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")


class EnhancedPromptOut(BaseModel):
    enhanced_prompt: str
    is_reliable: bool


class TitleOut(BaseModel):
    title: str
