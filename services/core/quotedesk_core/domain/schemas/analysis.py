"""Pydantic schemas for vision-model analysis and staff work product.

Raw model output is validated once, here, before anything is stored on a
lead or harvested as a training example.
"""

import json
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


ItemCategory = Literal["shoes", "bags", "other_leather"]

MaterialType = Literal[
    "smooth_leather",
    "suede",
    "nubuck",
    "patent",
    "exotic",
    "fabric",
    "synthetic",
    "mixed",
]

ConditionRating = Literal["excellent", "good", "fair", "poor"]

IssueSeverity = Literal["minor", "moderate", "severe"]


class AnalysisPayloadError(ValueError):
    """Raised when model output is not valid analysis JSON."""

    pass


# ============================================================================
# Vision Model Output
# ============================================================================


class DetectedIssue(BaseModel):
    """A single defect spotted on the item."""

    type: str = Field(..., description="Issue type, e.g. 'scuff', 'stain', 'heel_damage'")
    severity: IssueSeverity
    location: str = Field(default="", description="Where on the item, e.g. 'toe_box'")
    description: str = Field(default="")


class AIAnalysisResult(BaseModel):
    """Structured analysis of one physical item."""

    category: ItemCategory
    sub_type: str = Field(default="")
    material: MaterialType
    color: str = Field(default="")
    brand: Optional[str] = None
    condition: ConditionRating
    issues: list[DetectedIssue] = Field(default_factory=list)
    suggested_services: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    notes: Optional[str] = None

    model_config = {"extra": "ignore"}


# ============================================================================
# Staff Work Product
# ============================================================================


class _CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SelectedService(_CamelModel):
    """A service staff picked for an item."""

    service_id: str
    variant_id: str = ""
    service_name: str
    quantity: int = Field(default=1, ge=1)
    price: float = Field(default=0.0, ge=0.0)
    ai_suggested: bool = False


class SavedProductGroup(_CamelModel):
    """Images of one item with its analysis and chosen services."""

    id: str
    image_ids: list[str] = Field(default_factory=list)
    analysis: Optional[AIAnalysisResult] = None
    selected_services: list[SelectedService] = Field(default_factory=list)

    @field_validator("analysis", mode="before")
    @classmethod
    def parse_raw_analysis(cls, value: Any) -> Any:
        # Model output may be passed through verbatim, fenced or not
        if isinstance(value, str):
            return parse_analysis_payload(value)
        return value


class TrainingIssue(BaseModel):
    type: str
    severity: str = ""
    location: str = ""


class TrainingAnalysis(_CamelModel):
    category: str = ""
    sub_type: str = ""
    material: str = ""
    condition: str = ""
    issues: list[TrainingIssue] = Field(default_factory=list)


class TrainingService(_CamelModel):
    service_name: str
    service_id: str = ""


class ProductTrainingData(_CamelModel):
    """Verified photos-to-services pairing for one item of a completed lead."""

    image_urls: list[str] = Field(default_factory=list)
    analysis: Optional[TrainingAnalysis] = None
    services: list[TrainingService] = Field(default_factory=list)

    @property
    def is_usable(self) -> bool:
        return bool(self.image_urls) and bool(self.services)


# ============================================================================
# Parsing
# ============================================================================


def _strip_code_fence(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def parse_analysis_payload(raw: Union[str, dict[str, Any]]) -> AIAnalysisResult:
    """Validate raw vision-model output.

    Args:
        raw: A dict, or a JSON string optionally wrapped in a markdown code block.

    Returns:
        The validated analysis.

    Raises:
        AnalysisPayloadError: If the payload is not JSON or fails validation.
    """
    if isinstance(raw, str):
        try:
            data = json.loads(_strip_code_fence(raw))
        except json.JSONDecodeError as e:
            raise AnalysisPayloadError(f"Invalid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise AnalysisPayloadError("Analysis payload must be a JSON object")

    try:
        return AIAnalysisResult.model_validate(data)
    except ValidationError as e:
        raise AnalysisPayloadError(f"Validation error: {e}") from e


def parse_product_groups(raw: list[Any]) -> list[SavedProductGroup]:
    """Validate a list of saved product groups.

    Raises:
        AnalysisPayloadError: If any group fails validation.
    """
    try:
        return [SavedProductGroup.model_validate(item) for item in raw]
    except ValidationError as e:
        raise AnalysisPayloadError(f"Validation error: {e}") from e
