"""Model selection: a tagged variant describing how a turn's model is chosen.

- {"type": "key", "modelKey": "..."}: explicit model by registry key
- {"type": "category", "category": "..."}: the best model for a category
- {"type": "auto"}: classify the prompt, then behave as "category"

Exactly one variant applies; unknown tags and extra fields are rejected.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from polychat.db.models import Category


class KeySelection(BaseModel):
    type: Literal["key"] = "key"
    model_key: str = Field(alias="modelKey")

    model_config = ConfigDict(
        frozen=True, extra="forbid", populate_by_name=True, protected_namespaces=()
    )


class CategorySelection(BaseModel):
    type: Literal["category"] = "category"
    category: Category

    model_config = ConfigDict(frozen=True, extra="forbid")


class AutoSelection(BaseModel):
    type: Literal["auto"] = "auto"

    model_config = ConfigDict(frozen=True, extra="forbid")


ModelSelection = Annotated[
    KeySelection | CategorySelection | AutoSelection,
    Field(discriminator="type"),
]

model_selection_adapter: TypeAdapter[ModelSelection] = TypeAdapter(ModelSelection)
