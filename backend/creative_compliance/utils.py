"""
Utility functions for the Creative Compliance Service.
Color parsing and WCAG contrast helpers shared by the detector and the fixer.
"""
import re
from typing import Any, Optional, Tuple

import structlog

logger = structlog.get_logger()

HEX_COLOR_RE = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)

# WCAG AA threshold for normal text
WCAG_AA_NORMAL_TEXT = 4.5

BLACK = "#000000"
WHITE = "#FFFFFF"

# fix_contrast stepping
CONTRAST_STEP = 0.1
CONTRAST_MAX_STEPS = 20


def hex_to_rgb(hex_color: Any) -> Optional[Tuple[int, int, int]]:
    """
    Parse a 6-digit hex color (leading '#' optional) into an (r, g, b) tuple.
    Returns None for anything else; short forms and partial values are not accepted.
    """
    if not isinstance(hex_color, str):
        return None
    match = HEX_COLOR_RE.match(hex_color.strip())
    if not match:
        return None
    return tuple(int(group, 16) for group in match.groups())


def rgb_to_hex(r: float, g: float, b: float) -> str:
    """Convert channel values to a lowercase #rrggbb string, clamping to 0-255."""
    channels = [min(255, max(0, int(round(c)))) for c in (r, g, b)]
    return "#" + "".join(f"{c:02x}" for c in channels)


def relative_luminance(r: int, g: int, b: int) -> float:
    """
    Calculate relative luminance of an sRGB color for WCAG contrast calculation.
    Channels are 0-255.
    """
    def adjust(c):
        c = c / 255
        return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4

    return 0.2126 * adjust(r) + 0.7152 * adjust(g) + 0.0722 * adjust(b)


def color_luminance(hex_color: str) -> float:
    """Relative luminance of a hex color, 0.5 when it cannot be parsed."""
    rgb = hex_to_rgb(hex_color)
    if rgb is None:
        return 0.5
    return relative_luminance(*rgb)


def contrast_ratio(color1: str, color2: str) -> float:
    """
    Calculate WCAG contrast ratio between two hex colors.
    Returns a value between 1 and 21. Unparseable input yields 1 (worst case).
    """
    rgb1 = hex_to_rgb(color1)
    rgb2 = hex_to_rgb(color2)
    if rgb1 is None or rgb2 is None:
        return 1.0

    l1 = relative_luminance(*rgb1)
    l2 = relative_luminance(*rgb2)

    lighter = max(l1, l2)
    darker = min(l1, l2)

    return (lighter + 0.05) / (darker + 0.05)


def adjust_brightness(hex_color: str, percent: float) -> str:
    """
    Scale every channel by (1 + percent), clamped to 0-255.
    Negative percent darkens, positive lightens. Invalid input is returned unchanged.
    """
    rgb = hex_to_rgb(hex_color)
    if rgb is None:
        return hex_color
    return rgb_to_hex(*(c + c * percent for c in rgb))


def fix_contrast(
    text_color: str,
    background_color: str,
    target_ratio: float = WCAG_AA_NORMAL_TEXT
) -> str:
    """
    Adjust a text color until it reaches target_ratio against the background.

    Light backgrounds (luminance > 0.5) darken the text, dark ones lighten it,
    in 10% steps for at most 20 steps. If the target is still missed the color
    snaps to pure black or white; when that pole also misses the target the
    opposite pole is used if it scores higher.
    """
    if contrast_ratio(text_color, background_color) >= target_ratio:
        return text_color

    darken = color_luminance(background_color) > 0.5
    step = -CONTRAST_STEP if darken else CONTRAST_STEP

    adjusted = text_color
    attempts = 0
    while contrast_ratio(adjusted, background_color) < target_ratio and attempts < CONTRAST_MAX_STEPS:
        adjusted = adjust_brightness(adjusted, step)
        attempts += 1

    if contrast_ratio(adjusted, background_color) >= target_ratio:
        return adjusted

    pole, other = (BLACK, WHITE) if darken else (WHITE, BLACK)
    if (contrast_ratio(pole, background_color) < target_ratio and
            contrast_ratio(other, background_color) > contrast_ratio(pole, background_color)):
        logger.debug("contrast_pole_swapped", background=background_color, pole=other)
        return other
    return pole


def color_to_hex(value: Any, default: str = BLACK) -> str:
    """
    Normalize a color value to a hex string.

    Accepts '#rrggbb' strings (returned as given), '#rgb' shorthand and
    {r, g, b} mappings. Anything else, including named or rgb() strings,
    falls back to default.
    """
    if isinstance(value, str):
        value = value.strip()
        if re.match(r"^#[0-9a-f]{3}$", value, re.IGNORECASE):
            value = "#" + "".join(c * 2 for c in value[1:])
        return value if value.startswith("#") and hex_to_rgb(value) else default
    if isinstance(value, dict) and all(k in value for k in ("r", "g", "b")):
        try:
            return rgb_to_hex(float(value["r"]), float(value["g"]), float(value["b"]))
        except (TypeError, ValueError):
            return default
    return default


def get_suggested_text_color(bg_color: str) -> str:
    """
    Suggest a text color (black or white) that has good contrast with background.
    """
    if contrast_ratio(BLACK, bg_color) >= contrast_ratio(WHITE, bg_color):
        return BLACK
    return WHITE


def sanitize_text_for_llm(text: str) -> str:
    """Sanitize user-provided text before passing it to a text-generation provider."""
    # Remove potential injection patterns
    text = re.sub(r'\{[^}]*\}', '', text)  # Remove template-like patterns
    text = re.sub(r'```[^`]*```', '', text)  # Remove code blocks
    text = re.sub(r'<[^>]*>', '', text)  # Remove HTML-like tags
    text = text.strip()
    # Limit length
    return text[:500]
