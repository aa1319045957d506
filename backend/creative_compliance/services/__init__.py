"""
Services package initialization.
"""
from creative_compliance.services.validators import detect_violations, summarize
from creative_compliance.services.auto_fix import auto_fix, check_and_fix
from creative_compliance.services.copy_rewriter import rewrite_text, build_provider_chain
from creative_compliance.services.retail_rules import get_retail_rules

__all__ = [
    "detect_violations",
    "summarize",
    "auto_fix",
    "check_and_fix",
    "rewrite_text",
    "build_provider_chain",
    "get_retail_rules"
]
