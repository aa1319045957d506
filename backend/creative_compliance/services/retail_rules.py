"""
Retail Rules - load retailer rule configurations from JSON files.
Falls back to the built-in default rule set when no file is available.
"""
import os
import re
import json
from pathlib import Path
from typing import Optional, Dict, Any

import structlog
from pydantic import ValidationError

from creative_compliance.models import RuleConfiguration

logger = structlog.get_logger()

RULES_DIR = Path(os.getenv("RULES_DIR", Path(__file__).parent.parent.parent / "rules"))
DEFAULT_RETAILER = os.getenv("DEFAULT_RETAILER", "Tesco")

# Retailer names map straight to file names
RETAILER_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _-]*$")

# Rule file keys -> RuleConfiguration fields
RULE_FILE_KEYS = {
    "min_font_size": "min_font_size",
    "unsafe_top": "unsafe_top_height",
    "unsafe_bottom": "unsafe_bottom_height",
    "required_disclaimer": "required_disclaimer",
    "allowed_tags": "allowed_tag_phrases",
    "prohibited_claims": "prohibited_claims",
    "prohibited_words": "prohibited_words",
    "tone_guidelines": "tone_guidelines",
    "compliance_rules": "compliance_rules",
}


def _rules_path(retailer: str, rules_dir: Path) -> Path:
    return rules_dir / f"{retailer.lower()}.json"


def parse_rule_file(data: Dict[str, Any], retailer: str) -> RuleConfiguration:
    """
    Merge rule-file values over the default rule set.
    Keys that are missing, null or empty fall back to the defaults.
    """
    values: Dict[str, Any] = {"retailer": data.get("retailer") or retailer}
    for file_key, field in RULE_FILE_KEYS.items():
        value = data.get(file_key)
        if value in (None, "", []):
            continue
        values[field] = value
    return RuleConfiguration(**values)


def get_retail_rules(
    retailer: Optional[str] = None,
    rules_dir: Optional[Path] = None
) -> RuleConfiguration:
    """
    Load the rule configuration for a retailer.

    Reads <rules_dir>/<retailer>.json. A missing or invalid file yields the
    default rule set; this function never raises. Every call returns a fresh
    instance.
    """
    retailer = retailer or DEFAULT_RETAILER
    rules_dir = Path(rules_dir) if rules_dir else RULES_DIR
    if not RETAILER_NAME_RE.match(retailer):
        logger.warning("retailer_name_invalid", retailer=retailer, using="defaults")
        return RuleConfiguration(retailer=DEFAULT_RETAILER)

    path = _rules_path(retailer, rules_dir)
    if not path.exists():
        logger.warning("rules_file_missing", retailer=retailer, path=str(path), using="defaults")
        return RuleConfiguration(retailer=retailer)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("rules file must contain a JSON object")
        rules = parse_rule_file(data, retailer)
    except (OSError, ValueError, ValidationError) as e:
        logger.error("rules_file_invalid", retailer=retailer, path=str(path), error=str(e))
        return RuleConfiguration(retailer=retailer)

    logger.info("rules_loaded", retailer=rules.retailer, path=str(path))
    return rules
