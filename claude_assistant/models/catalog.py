"""
Static catalog of the Claude models offered to the host.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelDescriptor(BaseModel):
    """Limits and capabilities of a selectable model."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Model identifier")
    name: str = Field(..., description="Human-readable model name")
    family: str = Field(..., description="Model family")
    max_input_tokens: int = Field(..., gt=0, description="Context window size")
    max_output_tokens: int = Field(..., gt=0, description="Maximum tokens per response")
    supports_vision: bool = Field(False, description="Accepts image content")
    supports_tools: bool = Field(False, description="Accepts tool definitions")
    is_default: bool = Field(False, description="Default selection in model pickers")


CLAUDE_MODELS: Dict[str, ModelDescriptor] = {
    descriptor.id: descriptor
    for descriptor in (
        ModelDescriptor(
            id="claude-sonnet-4-20250514",
            name="Claude Sonnet 4",
            family="claude-4-0",
            max_input_tokens=200000,
            max_output_tokens=64000,
            supports_vision=True,
            supports_tools=True,
            is_default=True,
        ),
        ModelDescriptor(
            id="claude-3-7-sonnet-20250219",
            name="Claude Sonnet 3.7",
            family="claude-3-7",
            max_input_tokens=200000,
            max_output_tokens=64000,
            supports_vision=True,
            supports_tools=True,
        ),
        ModelDescriptor(
            id="claude-3-5-haiku-20241022",
            name="Claude 3.5 Haiku",
            family="claude-3-5",
            max_input_tokens=200000,
            max_output_tokens=8192,
            supports_vision=True,
            supports_tools=True,
        ),
    )
}

# Cheapest catalog entry, used for connectivity checks
TEST_CONNECTION_MODEL = "claude-3-5-haiku-20241022"


def get_model(model_id: str) -> Optional[ModelDescriptor]:
    return CLAUDE_MODELS.get(model_id)


def list_models() -> List[ModelDescriptor]:
    return list(CLAUDE_MODELS.values())


def default_model() -> ModelDescriptor:
    return next(descriptor for descriptor in CLAUDE_MODELS.values() if descriptor.is_default)
