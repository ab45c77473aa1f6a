"""Model registry Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ModelOut(BaseModel):
    """Response schema for a registry model."""

    id: UUID
    key: str
    display_name: str
    provider: str
    max_context_tokens: int
    supports_pdf: bool
    supports_image: bool
    supports_reasoning: bool

    model_config = ConfigDict(from_attributes=True)


class BestModelOut(BaseModel):
    """Category → model mapping. `model` is None when the mapping is broken."""

    category: str
    model: ModelOut | None = None
