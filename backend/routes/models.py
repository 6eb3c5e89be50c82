"""Pydantic request models for API endpoints.

Request bodies accept camelCase (idempotencyKey) as well as snake_case
(idempotency_key) field names.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rpg_turns.models import InputType, NodeType, StatBlock


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateRunBody(_Body):
    seed: str | None = Field(default=None, max_length=64)
    node_type: NodeType = "COMBAT"
    enemies: list[str] | None = None
    player_stats: StatBlock | None = None


class TurnInput(_Body):
    type: InputType
    text: str | None = Field(default=None, max_length=400)
    choice_id: str | None = Field(default=None, max_length=80)


class TurnOptions(_Body):
    skip_llm: bool = False


class SubmitTurnBody(_Body):
    input: TurnInput
    idempotency_key: str = Field(min_length=1, max_length=80)
    expected_next_turn_no: int = Field(ge=0)
    options: TurnOptions = Field(default_factory=TurnOptions)
