"""
Auto-Fix Pipeline - applies one deterministic corrective action per violation.

Fixes run on a deep copy of the scene in severity order (high, medium, low).
Each (fix kind, element) pair is applied at most once per run. Text problems
are delegated to the copy rewriter; every other fix is synchronous.
"""
from typing import List, Optional, Sequence, Set, Dict, Callable, Awaitable, Union, Any

import structlog

from creative_compliance.models import (
    Scene, TextElement, RuleConfiguration, Violation, FixKind, Severity,
    FixResult, coerce_scene
)
from creative_compliance.utils import fix_contrast, get_suggested_text_color, WCAG_AA_NORMAL_TEXT
from creative_compliance.services.validators import (
    detect_violations, checked_text_elements, check_missing_disclaimer, check_missing_tag_text,
    has_disclaimer, has_tag_phrase,
    text_violates_copy_rules, resolve_background, resolve_text_color
)
from creative_compliance.services.copy_rewriter import TextProvider, rewrite_text

logger = structlog.get_logger()


# ============================================================================
# CONFIGURATION
# ============================================================================

SAFE_ZONE_MARGIN = 10

SEVERITY_ORDER = {
    Severity.HIGH.value: 0,
    Severity.MEDIUM.value: 1,
    Severity.LOW.value: 2,
}

# Inserted disclaimer
DISCLAIMER_LEFT = 50
DISCLAIMER_WIDTH = 300
DISCLAIMER_FONT_SIZE = 20

# Inserted tag
TAG_LEFT = 50
TAG_WIDTH = 200
TAG_HEIGHT = 30
TAG_FONT_SIZE = 24
TAG_OFFSET = 20
TAG_COLOR = "#0066CC"


def severity_rank(violation: Violation) -> int:
    """Sort rank for a violation; unknown severities rank as medium."""
    severity = violation.severity
    value = severity.value if isinstance(severity, Severity) else str(severity).lower()
    return SEVERITY_ORDER.get(value, SEVERITY_ORDER[Severity.MEDIUM.value])


def fix_key(violation: Violation) -> str:
    """Dedup key: '<fix kind>_<element index or global>'."""
    target = "global" if violation.element_index is None else str(violation.element_index)
    return f"{violation.fix_directive.kind.value}_{target}"


class AutoFixer:
    """
    One fix pass over a private copy of a scene.
    Create a new instance per pass; instances are not reused.
    """

    def __init__(
        self,
        scene: Scene,
        rules: RuleConfiguration,
        providers: Optional[Sequence[TextProvider]] = None
    ):
        self.scene = scene.model_copy(deep=True)
        self.rules = rules
        self.providers = list(providers or [])
        self.applied: List[str] = []
        self.warnings: List[str] = []
        self._done: set = set()
        self._handlers: Dict[FixKind, Callable[[Violation], Awaitable[bool]]] = {
            FixKind.MOVE_OUT_OF_UNSAFE_ZONE: self._fix_unsafe_zone,
            FixKind.INCREASE_FONT_SIZE: self._fix_font_size,
            FixKind.INCREASE_CONTRAST: self._fix_contrast,
            FixKind.ADD_DISCLAIMER: self._add_disclaimer,
            FixKind.ADD_TAG_TEXT: self._add_tag_text,
            FixKind.REWRITE_TEXT: self._rewrite_text,
        }

    @property
    def safe_floor(self) -> float:
        return self.scene.height - self.rules.unsafe_bottom_height

    async def run(self, violations: Sequence[Violation]) -> FixResult:
        already_failing = {v.id for v in self._scene_rule_violations()}

        for violation in sorted(violations, key=severity_rank):
            if violation.fix_directive is None:
                continue

            key = fix_key(violation)
            if key in self._done:
                logger.debug("fix_skipped_duplicate", violation=violation.id, key=key)
                continue
            self._done.add(key)

            handler = self._handlers[violation.fix_directive.kind]
            if await handler(violation):
                self.applied.append(violation.id)

        await self._restore_scene_rules(already_failing)

        logger.info(
            "auto_fix_applied",
            violations=len(violations),
            applied=len(self.applied),
            warnings=len(self.warnings)
        )
        return FixResult(scene=self.scene, applied=self.applied, warnings=self.warnings)

    # ------------------------------------------------------------------
    # Element-level fixes
    # ------------------------------------------------------------------

    def _target(self, violation: Violation) -> Optional[TextElement]:
        index = violation.element_index
        if index is None or not 0 <= index < len(self.scene.elements):
            logger.debug("fix_target_missing", violation=violation.id, index=index)
            return None
        element = self.scene.elements[index]
        if not isinstance(element, TextElement):
            logger.debug("fix_target_not_text", violation=violation.id, index=index)
            return None
        return element

    def _move_into_safe_zone(self, element: TextElement) -> bool:
        """Move a text element out of the unsafe bands. Returns False if already clear."""
        top_limit = self.rules.unsafe_top_height
        box_height = element.height * element.scale_y

        if element.top < top_limit:
            element.top = top_limit + SAFE_ZONE_MARGIN
        elif element.top + box_height > self.safe_floor:
            element.top = max(
                top_limit + SAFE_ZONE_MARGIN,
                self.safe_floor - box_height - SAFE_ZONE_MARGIN
            )
        else:
            return False
        return True

    async def _fix_unsafe_zone(self, violation: Violation) -> bool:
        element = self._target(violation)
        if element is None:
            return False
        return self._move_into_safe_zone(element)

    async def _fix_font_size(self, violation: Violation) -> bool:
        element = self._target(violation)
        if element is None or element.effective_font_size >= self.rules.min_font_size:
            return False

        element.font_size = max(element.font_size, self.rules.min_font_size)
        element.scale_x = 1
        element.scale_y = 1
        # Dropping a shrinking scale can push the box back into the bottom band
        if element.effective_bottom > self.safe_floor:
            self._move_into_safe_zone(element)
        return True

    async def _fix_contrast(self, violation: Violation) -> bool:
        element = self._target(violation)
        if element is None:
            return False
        text_color = resolve_text_color(element)
        fixed = fix_contrast(text_color, resolve_background(self.scene), WCAG_AA_NORMAL_TEXT)
        element.color = fixed
        return True

    async def _rewrite_text(self, violation: Violation) -> bool:
        element = self._target(violation)
        if element is None:
            return False

        fallback = self.rules.default_tag_phrase
        try:
            outcome = await rewrite_text(element.content, self.rules, self.providers)
        except Exception as e:
            logger.error("copy_rewrite_failed", violation=violation.id, error=str(e))
            self.warnings.append(f"{violation.id}: rewrite failed, replaced with default tag text")
            element.content = fallback
            return True

        if outcome.fallback_used:
            reason = "text providers failed" if outcome.errors else "no text provider configured"
            self.warnings.append(f"{violation.id}: {reason}, used local sanitization")

        new_text = outcome.text
        if text_violates_copy_rules(new_text, self.rules):
            logger.info("rewrite_still_noncompliant", violation=violation.id, provider=outcome.provider)
            self.warnings.append(f"{violation.id}: rewrite still non-compliant, replaced with default tag text")
            new_text = fallback

        element.content = new_text
        return True

    # ------------------------------------------------------------------
    # Scene-level fixes
    # ------------------------------------------------------------------

    def _scene_rule_violations(self) -> List[Violation]:
        texts = checked_text_elements(self.scene)
        tag_found = any(has_tag_phrase(t.content, self.rules) for t in texts)
        found = (
            check_missing_disclaimer(texts, self.rules),
            check_missing_tag_text(tag_found, self.rules),
        )
        return [v for v in found if v is not None]

    async def _restore_scene_rules(self, already_failing: Set[str]) -> None:
        """
        Fix scene-wide rules that this pass broke. A rewrite can drop the only
        disclaimer or tag, or lengthen short copy so a disclaimer becomes required.
        """
        for violation in self._scene_rule_violations():
            if violation.id in already_failing:
                continue
            handler = self._handlers[violation.fix_directive.kind]
            if await handler(violation):
                logger.info("scene_rule_restored", violation=violation.id)
                self.applied.append(violation.id)

    async def _add_disclaimer(self, violation: Violation) -> bool:
        texts = checked_text_elements(self.scene)
        if any(has_disclaimer(t.content, self.rules) for t in texts):
            return False
        if not self.rules.required_disclaimer.strip():
            return False

        font_size = max(DISCLAIMER_FONT_SIZE, self.rules.min_font_size)
        top = max(
            self.rules.unsafe_top_height + SAFE_ZONE_MARGIN,
            self.safe_floor - font_size - SAFE_ZONE_MARGIN
        )
        self.scene.append(TextElement(
            content=self.rules.required_disclaimer,
            left=DISCLAIMER_LEFT,
            top=top,
            width=DISCLAIMER_WIDTH,
            height=font_size,
            font_size=font_size,
            color=get_suggested_text_color(resolve_background(self.scene)),
            font_family="Arial",
            name="disclaimer"
        ))
        return True

    async def _add_tag_text(self, violation: Violation) -> bool:
        texts = checked_text_elements(self.scene)
        if not self.rules.allowed_tag_phrases:
            return False
        if any(has_tag_phrase(t.content, self.rules) for t in texts):
            return False

        self.scene.append(TextElement(
            content=self.rules.default_tag_phrase,
            left=TAG_LEFT,
            top=self.rules.unsafe_top_height + TAG_OFFSET,
            width=TAG_WIDTH,
            height=TAG_HEIGHT,
            font_size=max(TAG_FONT_SIZE, self.rules.min_font_size),
            color=fix_contrast(TAG_COLOR, resolve_background(self.scene)),
            font_family="Arial",
            name="tag",
            fontWeight="bold"
        ))
        return True


async def auto_fix(
    scene: Union[Scene, dict, Any],
    violations: Sequence[Violation],
    rules: Optional[RuleConfiguration] = None,
    providers: Optional[Sequence[TextProvider]] = None
) -> FixResult:
    """
    Apply fixes for the given violations and return the fixed scene copy.

    Args:
        scene: Scene model or its raw mapping form; never modified
        violations: Violations from detect_violations
        rules: Rule configuration (default rule set when omitted)
        providers: Ordered text providers for rewrites; local sanitization when empty

    Returns:
        FixResult with the new scene, the ids of violations acted on, and
        non-fatal warnings (provider fallbacks)

    Raises:
        ValueError: if the scene cannot be read at all (nothing is fixed)
    """
    rules = rules or RuleConfiguration()
    parsed = coerce_scene(scene)
    if parsed is None:
        raise ValueError("Scene is malformed: 'elements' must be a list of elements")
    return await AutoFixer(parsed, rules, providers).run(violations)


async def check_and_fix(
    scene: Union[Scene, dict, Any],
    rules: Optional[RuleConfiguration] = None,
    providers: Optional[Sequence[TextProvider]] = None
) -> FixResult:
    """Detect violations and fix them in one pass. Malformed scenes raise ValueError."""
    rules = rules or RuleConfiguration()
    parsed = coerce_scene(scene)
    if parsed is None:
        raise ValueError("Scene is malformed: 'elements' must be a list of elements")
    violations = detect_violations(parsed, rules)
    return await AutoFixer(parsed, rules, providers).run(violations)
