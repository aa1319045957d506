"""
Violation detector implementing the retailer compliance rules.
Scans a scene against a rule configuration and reports every breach in scan order.
"""
import re
from difflib import SequenceMatcher
from typing import List, Optional, Any, Union

import structlog

from creative_compliance.models import (
    Scene, TextElement, RuleConfiguration, Violation, FixDirective, FixKind,
    RewriteReason, Severity, ComplianceSummary, OVERLAY_NAMES, coerce_scene
)
from creative_compliance.utils import (
    contrast_ratio, color_to_hex, WCAG_AA_NORMAL_TEXT, BLACK, WHITE
)

logger = structlog.get_logger()


# ============================================================================
# CONFIGURATION
# ============================================================================

# Generic disclaimer wording accepted alongside the configured disclaimer
GENERIC_DISCLAIMERS = [
    "terms and conditions",
    "terms & conditions",
    "t&cs",
    "see terms",
    "subject to terms"
]

# Text shorter than this that names the retailer is treated as a failed tag attempt
TAG_ATTEMPT_MAX_LENGTH = 50

# Text longer than this (trimmed) makes a disclaimer mandatory
SUBSTANTIAL_TEXT_LENGTH = 20

# Words at least this similar to a retailer name word count as a mention (catches "Tesc")
BRAND_SIMILARITY = 0.8
BRAND_WORD_MIN_LENGTH = 4

PREVIEW_LENGTH = 30


# ============================================================================
# TEXT HELPERS
# ============================================================================

def find_phrase(text: str, phrases: List[str]) -> Optional[str]:
    """Return the first phrase contained in text (case-insensitive), or None."""
    lowered = text.lower()
    for phrase in phrases:
        if phrase and phrase.lower() in lowered:
            return phrase
    return None


def has_disclaimer(text: str, rules: RuleConfiguration) -> bool:
    """Check whether text carries the configured disclaimer or a generic equivalent."""
    candidates = [rules.required_disclaimer] + GENERIC_DISCLAIMERS
    return find_phrase(text, candidates) is not None


def has_tag_phrase(text: str, rules: RuleConfiguration) -> bool:
    return find_phrase(text, rules.allowed_tag_phrases) is not None


def mentions_retailer(text: str, retailer: str) -> bool:
    """Exact mention of the retailer name, or a near-miss spelling of one of its words."""
    retailer = retailer.strip().lower()
    if not retailer:
        return False
    lowered = text.lower()
    if retailer in lowered:
        return True
    brand_words = [w for w in re.findall(r"\w+", retailer) if len(w) >= BRAND_WORD_MIN_LENGTH]
    for word in re.findall(r"\w+", lowered):
        if len(word) < BRAND_WORD_MIN_LENGTH - 1:
            continue
        if any(SequenceMatcher(None, word, brand).ratio() >= BRAND_SIMILARITY for brand in brand_words):
            return True
    return False


def is_tag_attempt(text: str, rules: RuleConfiguration) -> bool:
    """
    Short text that names the retailer but matches no allowed tag phrase.
    Longer copy that mentions the retailer is treated as body text.
    """
    if not rules.allowed_tag_phrases or has_tag_phrase(text, rules):
        return False
    return len(text) < TAG_ATTEMPT_MAX_LENGTH and mentions_retailer(text, rules.retailer)


def text_violates_copy_rules(text: str, rules: RuleConfiguration) -> bool:
    """True if text would trip the tag, claim or word checks."""
    return (
        is_tag_attempt(text, rules)
        or find_phrase(text, rules.prohibited_claims) is not None
        or find_phrase(text, rules.prohibited_words) is not None
    )


def resolve_background(scene: Scene) -> str:
    """Flat background color of the scene, white by default."""
    return color_to_hex(scene.background_color, default=WHITE)


def resolve_text_color(element: TextElement) -> str:
    """Text color as hex, black by default."""
    return color_to_hex(element.color, default=BLACK)


def _preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    return text[:length] + ("..." if len(text) > length else "")


def _directive(kind: FixKind, reason: Optional[RewriteReason] = None) -> FixDirective:
    return FixDirective(kind=kind, reason=reason)


# ============================================================================
# PER-ELEMENT CHECKS
# ============================================================================

def check_unsafe_top(element: TextElement, n: int, rules: RuleConfiguration) -> Optional[Violation]:
    """Text must start below the top unsafe band."""
    if element.top >= rules.unsafe_top_height:
        return None
    return Violation(
        id=f"text_unsafe_top_{n}",
        message=f'Text "{_preview(element.content)}" is in unsafe top zone (<{rules.unsafe_top_height:g}px)',
        fix_directive=_directive(FixKind.MOVE_OUT_OF_UNSAFE_ZONE),
        element_index=element.index,
        severity=Severity.HIGH
    )


def check_unsafe_bottom(
    element: TextElement, n: int, scene: Scene, rules: RuleConfiguration
) -> Optional[Violation]:
    """Text must end above the bottom unsafe band."""
    floor = scene.height - rules.unsafe_bottom_height
    if element.effective_bottom <= floor:
        return None
    return Violation(
        id=f"text_unsafe_bottom_{n}",
        message=f'Text "{_preview(element.content)}" is in unsafe bottom zone (>{floor:g}px)',
        fix_directive=_directive(FixKind.MOVE_OUT_OF_UNSAFE_ZONE),
        element_index=element.index,
        severity=Severity.HIGH
    )


def check_font_size(element: TextElement, n: int, rules: RuleConfiguration) -> Optional[Violation]:
    """Effective font size (after scaling) must reach the minimum."""
    size = element.effective_font_size
    if size >= rules.min_font_size:
        return None
    return Violation(
        id=f"font_small_{n}",
        message=f"Font too small (<{rules.min_font_size:g}px). Current size: {size:.1f}px",
        fix_directive=_directive(FixKind.INCREASE_FONT_SIZE),
        element_index=element.index,
        severity=Severity.MEDIUM
    )


def check_contrast(element: TextElement, n: int, background: str) -> Optional[Violation]:
    """Text must meet WCAG AA contrast against the scene background."""
    ratio = contrast_ratio(resolve_text_color(element), background)
    if ratio >= WCAG_AA_NORMAL_TEXT:
        return None
    return Violation(
        id=f"contrast_low_{n}",
        message=f"Text contrast too low ({ratio:.2f}:1). Minimum required: {WCAG_AA_NORMAL_TEXT}:1",
        fix_directive=_directive(FixKind.INCREASE_CONTRAST),
        element_index=element.index,
        severity=Severity.HIGH
    )


def check_tag_text(element: TextElement, n: int, rules: RuleConfiguration) -> Optional[Violation]:
    """Short retailer mentions must use an allowed tag phrase."""
    if not is_tag_attempt(element.content, rules):
        return None
    allowed = " or ".join(f'"{p}"' for p in rules.allowed_tag_phrases[:2])
    return Violation(
        id=f"tag_text_incorrect_{n}",
        message=f'TAG text incorrect. Must contain {allowed}. Current: "{element.content[:40]}"',
        fix_directive=_directive(FixKind.REWRITE_TEXT, RewriteReason.TAG_INCORRECT),
        element_index=element.index,
        severity=Severity.HIGH
    )


def check_prohibited_claims(element: TextElement, n: int, rules: RuleConfiguration) -> Optional[Violation]:
    claim = find_phrase(element.content, rules.prohibited_claims)
    if claim is None:
        return None
    return Violation(
        id=f"prohibited_claim_{n}",
        message=f'Text contains prohibited claim. Found: "{claim}"',
        fix_directive=_directive(FixKind.REWRITE_TEXT, RewriteReason.PROHIBITED_CLAIM),
        element_index=element.index,
        severity=Severity.HIGH
    )


def check_prohibited_words(element: TextElement, n: int, rules: RuleConfiguration) -> Optional[Violation]:
    word = find_phrase(element.content, rules.prohibited_words)
    if word is None:
        return None
    return Violation(
        id=f"unsafe_word_{n}",
        message=f'Text contains unsafe/prohibited word. Found: "{word}"',
        fix_directive=_directive(FixKind.REWRITE_TEXT, RewriteReason.PROHIBITED_WORD),
        element_index=element.index,
        severity=Severity.MEDIUM
    )


# ============================================================================
# SCENE-GLOBAL CHECKS
# ============================================================================

def check_missing_disclaimer(
    texts: List[TextElement], rules: RuleConfiguration
) -> Optional[Violation]:
    """
    A disclaimer is required once the scene carries substantial copy.
    Near-empty scenes are not flagged.
    """
    if not rules.required_disclaimer.strip():
        return None
    if any(has_disclaimer(t.content, rules) for t in texts):
        return None
    if not any(len(t.content.strip()) > SUBSTANTIAL_TEXT_LENGTH for t in texts):
        return None
    return Violation(
        id="missing_disclaimer",
        message=f'Missing required disclaimer text (e.g., "{rules.required_disclaimer}")',
        fix_directive=_directive(FixKind.ADD_DISCLAIMER),
        element_index=None,
        severity=Severity.MEDIUM
    )


def check_missing_tag_text(tag_found: bool, rules: RuleConfiguration) -> Optional[Violation]:
    """Every scene needs at least one allowed tag phrase."""
    if tag_found or not rules.allowed_tag_phrases:
        return None
    allowed = " or ".join(f'"{p}"' for p in rules.allowed_tag_phrases[:2])
    return Violation(
        id="missing_tag_text",
        message=f"Missing required TAG text. Must contain {allowed}",
        fix_directive=_directive(FixKind.ADD_TAG_TEXT),
        element_index=None,
        severity=Severity.HIGH
    )


# ============================================================================
# MAIN DETECTION FUNCTION
# ============================================================================

def checked_text_elements(scene: Scene) -> List[TextElement]:
    """Text elements in scene order, overlay guides excluded."""
    return [t for t in scene.text_elements() if t.name not in OVERLAY_NAMES]


def detect_violations(
    scene: Union[Scene, dict, Any],
    rules: Optional[RuleConfiguration] = None
) -> List[Violation]:
    """
    Check a scene against a retailer rule configuration.

    Args:
        scene: Scene model or its raw mapping form
        rules: Rule configuration (default rule set when omitted)

    Returns:
        Violations in scan order: per text element (top, bottom, font,
        contrast, tag, claim, word), then missing disclaimer, then missing tag.
        Malformed scenes yield an empty list.
    """
    rules = rules or RuleConfiguration()
    scene = coerce_scene(scene)
    if scene is None:
        return []

    background = resolve_background(scene)
    texts = checked_text_elements(scene)

    violations: List[Violation] = []
    tag_found = False

    for n, element in enumerate(texts, start=1):
        if has_tag_phrase(element.content, rules):
            tag_found = True

        for violation in (
            check_unsafe_top(element, n, rules),
            check_unsafe_bottom(element, n, scene, rules),
            check_font_size(element, n, rules),
            check_contrast(element, n, background),
            check_tag_text(element, n, rules),
            check_prohibited_claims(element, n, rules),
            check_prohibited_words(element, n, rules),
        ):
            if violation:
                violations.append(violation)

    for violation in (
        check_missing_disclaimer(texts, rules),
        check_missing_tag_text(tag_found, rules),
    ):
        if violation:
            violations.append(violation)

    logger.info(
        "violations_detected",
        retailer=rules.retailer,
        elements=len(scene.elements),
        text_elements=len(texts),
        violations=len(violations)
    )

    return violations


def summarize(violations: List[Violation]) -> ComplianceSummary:
    """Count violations by severity. A scene is ok when nothing is high severity."""
    counts = {s.value: 0 for s in Severity}
    for violation in violations:
        key = violation.severity.value if isinstance(violation.severity, Severity) else str(violation.severity)
        counts[key] = counts.get(key, 0) + 1
    return ComplianceSummary(
        ok=counts[Severity.HIGH.value] == 0,
        total=len(violations),
        high=counts[Severity.HIGH.value],
        medium=counts[Severity.MEDIUM.value],
        low=counts[Severity.LOW.value]
    )
