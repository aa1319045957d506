"""
Compliance Routes - check scenes against retailer rules and auto-fix them.
"""
from typing import Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from creative_compliance.models import (
    CheckRequest, CheckResponse, FixRequest, FixResult, FixCopyRequest,
    RewriteOutcome, RuleConfiguration
)
from creative_compliance.services.validators import detect_violations, summarize
from creative_compliance.services.auto_fix import auto_fix
from creative_compliance.services.copy_rewriter import TextProvider, rewrite_text
from creative_compliance.services.retail_rules import get_retail_rules

logger = structlog.get_logger()

router = APIRouter(prefix="/compliance", tags=["Compliance"])


def text_providers(request: Request) -> Sequence[TextProvider]:
    """Provider chain built at startup; empty until the app has started."""
    return getattr(request.app.state, "text_providers", ())


@router.post("/check", response_model=CheckResponse)
async def check_scene(request: CheckRequest):
    """
    Check a scene against the retailer's rule set.

    Checks, per text element:
    - Unsafe top / bottom zones
    - Minimum font size (after scaling)
    - WCAG AA contrast against the scene background
    - Tag text format, prohibited claims, prohibited words

    And once per scene:
    - Missing disclaimer (only when the scene has substantial copy)
    - Missing tag text

    A malformed scene returns an empty violation list.
    """
    rules = get_retail_rules(request.retailer)
    violations = detect_violations(request.scene, rules)
    summary = summarize(violations)

    logger.info(
        "scene_checked",
        retailer=rules.retailer,
        ok=summary.ok,
        violation_count=summary.total
    )

    return CheckResponse(violations=violations, summary=summary)


@router.post("/fix", response_model=FixResult)
async def fix_scene(
    request: FixRequest,
    providers: Sequence[TextProvider] = Depends(text_providers)
):
    """
    Apply automatic fixes for the supplied violations.

    Returns the fixed copy of the scene, the ids of the violations that were
    acted on, and warnings for fixes that had to fall back (for example,
    local sanitization when no text provider answered).
    """
    if not request.violations:
        raise HTTPException(status_code=400, detail="No violations provided for auto-fix")

    rules = get_retail_rules(request.retailer)
    result = await auto_fix(request.scene, request.violations, rules, providers)

    logger.info(
        "scene_fixed",
        retailer=rules.retailer,
        requested=len(request.violations),
        applied=len(result.applied),
        warnings=len(result.warnings)
    )

    return result


@router.post("/fix-copy", response_model=RewriteOutcome)
async def fix_copy(
    request: FixCopyRequest,
    providers: Sequence[TextProvider] = Depends(text_providers)
):
    """
    Rewrite a single piece of copy so it follows the retailer's copy rules.
    Uses the configured text providers, then local sanitization.
    """
    rules = get_retail_rules(request.retailer)
    return await rewrite_text(request.text, rules, providers)


@router.get("/rules", response_model=RuleConfiguration)
async def get_rules(retailer: Optional[str] = None):
    """
    Get the effective rule configuration for a retailer.

    Useful for documentation and UI display.
    """
    return get_retail_rules(retailer)
