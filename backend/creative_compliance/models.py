"""
Pydantic models for the Creative Compliance Service API.
"""
from typing import Optional, List, Literal, Union, Dict, Any, Annotated
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
import structlog

logger = structlog.get_logger()

DEFAULT_TAG_PHRASE = "Only at Tesco"

# Editor overlay guides, never checked
OVERLAY_NAMES = {"unsafeZoneTop", "unsafeZoneBottom"}


# ============================================================================
# RULE CONFIGURATION
# ============================================================================

class RuleConfiguration(BaseModel):
    """Retailer thresholds and phrase lists. Loaded once per request, never mutated."""
    model_config = ConfigDict(frozen=True)

    retailer: str = "Tesco"
    min_font_size: float = Field(default=20, gt=0)
    unsafe_top_height: float = Field(default=200, gt=0)
    unsafe_bottom_height: float = Field(default=250, gt=0)
    required_disclaimer: str = "Selected stores. While stocks last."
    allowed_tag_phrases: List[str] = Field(default_factory=lambda: [
        "Only at Tesco",
        "Available at Tesco",
        "Exclusive to Tesco",
        "Tesco Exclusive"
    ])
    prohibited_claims: List[str] = Field(default_factory=lambda: [
        "best", "cheapest", "lowest price", "guaranteed", "always", "never",
        "100%", "free", "no risk", "proven", "miracle", "instant", "secret"
    ])
    prohibited_words: List[str] = Field(default_factory=lambda: [
        "free", "guarantee", "warranty", "promise", "certified", "official",
        "approved", "recommended by doctors", "clinically proven"
    ])
    tone_guidelines: List[str] = Field(default_factory=lambda: [
        "Avoid superlatives",
        "Use factual language",
        "Avoid absolute claims",
        "Include appropriate disclaimers",
        "Be clear and transparent"
    ])
    compliance_rules: List[str] = Field(default_factory=lambda: [
        "No misleading claims",
        "No unsubstantiated claims",
        "No false promises",
        "Clear pricing information",
        "Accurate product descriptions"
    ])

    @field_validator(
        "allowed_tag_phrases", "prohibited_claims", "prohibited_words",
        "tone_guidelines", "compliance_rules", mode="before"
    )
    @classmethod
    def _none_is_empty(cls, value):
        return [] if value is None else value

    @property
    def default_tag_phrase(self) -> str:
        """Tag text used when nothing better is available."""
        return self.allowed_tag_phrases[0] if self.allowed_tag_phrases else DEFAULT_TAG_PHRASE


# ============================================================================
# SCENE MODEL
# ============================================================================

# Hex string, {r, g, b} mapping, or anything else the editor stores (gradients, patterns)
Color = Union[str, Dict[str, Any]]


class ElementBase(BaseModel):
    """Geometry shared by every element on the canvas."""
    # Editor payloads use camelCase (fontSize, scaleX); snake_case is accepted too
    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    index: int = 0
    left: float = 0
    top: float = 0
    width: float = 0
    height: float = 0
    scale_x: float = 1
    scale_y: float = 1
    angle: float = 0
    opacity: float = 1
    name: Optional[str] = None

    @field_validator("left", "top", "width", "height", "angle", mode="before")
    @classmethod
    def _geometry_default(cls, value):
        return 0 if value is None else value

    @field_validator("scale_x", "scale_y", mode="before")
    @classmethod
    def _scale_default(cls, value):
        # A zero or missing scale is read as unscaled
        return 1 if not value else value

    @property
    def effective_bottom(self) -> float:
        return self.top + self.height * self.scale_y


class TextElement(ElementBase):
    """Editable text box."""
    kind: Literal["text"] = "text"
    content: str = ""
    font_size: float = 16
    color: Optional[Color] = "#000000"
    font_family: str = "Arial"

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value):
        return "" if value is None else str(value)

    @field_validator("font_size", mode="before")
    @classmethod
    def _font_size_default(cls, value):
        return 16 if value is None else value

    @property
    def effective_font_size(self) -> float:
        return self.font_size * max(self.scale_x, self.scale_y)


class ImageElement(ElementBase):
    """Placed image (packshot, logo, background photo)."""
    kind: Literal["image"] = "image"
    src: Optional[str] = None


class ShapeElement(ElementBase):
    """Vector shape; also used for any element kind the service does not know."""
    kind: Literal["shape"] = "shape"
    fill: Optional[Color] = None


Element = Annotated[Union[TextElement, ImageElement, ShapeElement], Field(discriminator="kind")]


class Scene(BaseModel):
    """The full document tree of one creative."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    width: float = 1080
    height: float = 1080
    background_color: Optional[Color] = "#FFFFFF"
    elements: List[Element] = Field(default_factory=list)

    @field_validator("width", "height", mode="before")
    @classmethod
    def _canvas_default(cls, value):
        return 1080 if not value else value

    @field_validator("elements", mode="before")
    @classmethod
    def _known_kinds(cls, value):
        if not isinstance(value, list):
            return value
        normalized = []
        for item in value:
            if isinstance(item, dict) and item.get("kind") not in ("text", "image", "shape"):
                item = {**item, "kind": "shape"}
            normalized.append(item)
        return normalized

    @model_validator(mode="after")
    def _assign_indexes(self):
        self.reindex()
        return self

    def reindex(self) -> None:
        """Set each element's index to its position in the list."""
        for position, element in enumerate(self.elements):
            element.index = position

    def append(self, element: ElementBase) -> ElementBase:
        """Append an element and give it the next index."""
        element.index = len(self.elements)
        self.elements.append(element)
        return element

    def text_elements(self) -> List[TextElement]:
        return [e for e in self.elements if isinstance(e, TextElement)]


def coerce_scene(payload: Any) -> Optional[Scene]:
    """
    Build a Scene from a Scene or a raw mapping.
    Returns None for malformed payloads (missing or non-list elements, bad types).
    """
    if isinstance(payload, Scene):
        return payload
    if not isinstance(payload, dict) or not isinstance(payload.get("elements"), list):
        logger.warning("scene_malformed", reason="elements missing or not a list")
        return None
    try:
        return Scene.model_validate(payload)
    except ValidationError as e:
        logger.warning("scene_malformed", reason="validation_failed", errors=e.error_count())
        return None


# ============================================================================
# VIOLATIONS
# ============================================================================

class Severity(str, Enum):
    """Severity levels for violations. Fix order follows declaration order."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FixKind(str, Enum):
    """Corrective actions the fixer knows how to apply."""
    MOVE_OUT_OF_UNSAFE_ZONE = "move_out_of_unsafe_zone"
    INCREASE_FONT_SIZE = "increase_font_size"
    INCREASE_CONTRAST = "increase_contrast"
    ADD_DISCLAIMER = "add_disclaimer"
    ADD_TAG_TEXT = "add_tag_text"
    REWRITE_TEXT = "rewrite_text"


class RewriteReason(str, Enum):
    """Why a text element needs rewriting."""
    TAG_INCORRECT = "tag_incorrect"
    PROHIBITED_CLAIM = "prohibited_claim"
    PROHIBITED_WORD = "prohibited_word"


class FixDirective(BaseModel):
    """A fix kind, plus the reason when the kind is REWRITE_TEXT."""
    kind: FixKind
    reason: Optional[RewriteReason] = None

    @model_validator(mode="after")
    def _reason_only_for_rewrite(self):
        if self.kind == FixKind.REWRITE_TEXT and self.reason is None:
            raise ValueError("rewrite_text directive requires a reason")
        if self.kind != FixKind.REWRITE_TEXT:
            self.reason = None
        return self


class Violation(BaseModel):
    """A single rule breach found by the detector."""
    id: str
    message: str
    fix_directive: Optional[FixDirective] = None
    element_index: Optional[int] = None
    severity: Union[Severity, str] = Severity.MEDIUM

    @property
    def is_global(self) -> bool:
        return self.element_index is None


class ComplianceSummary(BaseModel):
    """Counts for a detection run."""
    ok: bool
    total: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class FixResult(BaseModel):
    """Outcome of one auto-fix pass."""
    scene: Scene
    applied: List[str] = []
    warnings: List[str] = []


class RewriteOutcome(BaseModel):
    """Outcome of one text rewrite."""
    text: str
    provider: Optional[str] = None
    fallback_used: bool = False
    errors: List[str] = []


# ============================================================================
# REQUESTS / RESPONSES
# ============================================================================

class CheckRequest(BaseModel):
    """Request for checking a scene."""
    scene: Dict[str, Any]
    retailer: Optional[str] = None


class CheckResponse(BaseModel):
    """Violations found in a scene."""
    violations: List[Violation] = []
    summary: ComplianceSummary


class FixRequest(BaseModel):
    """Request for fixing a scene."""
    scene: Scene
    violations: List[Violation] = []
    retailer: Optional[str] = None


class FixCopyRequest(BaseModel):
    """Request for rewriting a piece of copy."""
    text: str = Field(min_length=1)
    retailer: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    services: dict = {}
