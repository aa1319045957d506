"""
Copy rewriter for compliance fixes.
Tries a prioritized chain of text-generation providers: Groq, Grok (xAI),
Google Gemini, Ollama, OpenAI. Falls back to local sanitization when no
provider is configured or every provider fails.
"""
import os
import re
import asyncio
from pathlib import Path
from typing import Optional, List, Sequence, Protocol, runtime_checkable

import structlog
import httpx
import google.generativeai as genai
from dotenv import load_dotenv
# OpenAI client also serves Grok/xAI, Groq and Ollama through their compatible APIs
from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from creative_compliance.models import RuleConfiguration, RewriteOutcome
from creative_compliance.utils import sanitize_text_for_llm

# Load environment variables from project root
env_path = Path(__file__).parent.parent.parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)

logger = structlog.get_logger()

REWRITE_TIMEOUT_SECONDS = float(os.getenv("REWRITE_TIMEOUT_SECONDS", "15"))
DEFAULT_PROVIDER_ORDER = "groq,grok,gemini,ollama,openai"


# ============================================================================
# PROMPTS
# ============================================================================

REWRITE_SYSTEM_PROMPT = """You are a copy editor specializing in retail marketing compliance. Your task is to rewrite marketing copy to be compliant with retailer rules.

Key Requirements:
- Avoid claims and superlatives (best, cheapest, guaranteed, etc.)
- Avoid misleading language
- Use only allowed terms and phrases
- Enforce compliance with retailer guidelines
- Maintain the core message while ensuring compliance
- Keep the tone professional and factual
- If tag text is present, ensure it matches retailer-approved phrases

Retailer Rules ({retailer}):
- Allowed Tag Phrases: {allowed_tags}
- Prohibited Claims: {prohibited_claims}
- Prohibited Words: {prohibited_words}
- Tone Guidelines: {tone_guidelines}
- Compliance Rules: {compliance_rules}

Return ONLY the corrected copy. Do not include explanations or notes."""

REWRITE_USER_PROMPT = """Rewrite this text to be compliant with retailer rules, avoid claims, avoid misleading language, and enforce allowed terms:

{text}

Return the corrected copy:"""


def _join(items: Sequence[str], sep: str = ", ", empty: str = "none") -> str:
    return sep.join(items) if items else empty


def build_system_prompt(rules: RuleConfiguration) -> str:
    """System instruction embedding the retailer's rule configuration."""
    return REWRITE_SYSTEM_PROMPT.format(
        retailer=rules.retailer,
        allowed_tags=_join(rules.allowed_tag_phrases),
        prohibited_claims=_join(rules.prohibited_claims),
        prohibited_words=_join(rules.prohibited_words),
        tone_guidelines=_join(rules.tone_guidelines, "; "),
        compliance_rules=_join(rules.compliance_rules, "; "),
    )


def build_user_prompt(text: str) -> str:
    return REWRITE_USER_PROMPT.format(text=sanitize_text_for_llm(text))


# ============================================================================
# PROVIDERS
# ============================================================================

@runtime_checkable
class TextProvider(Protocol):
    """A remote text-generation service."""
    name: str

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        ...


PROVIDER_CONFIGS = {
    # Groq - Very fast inference, generous free tier
    "groq": {
        "base_url": "https://api.groq.com/openai/v1",
        "env_key": "GROQ_API_KEY",
        "default_model": "llama-3.3-70b-versatile",
    },
    # Grok (xAI), OpenAI-compatible API
    "grok": {
        "base_url": "https://api.x.ai/v1",
        "env_key": "XAI_API_KEY",
        "default_model": "grok-beta",
    },
    # Google Gemini (uses google-generativeai library)
    "gemini": {
        "env_key": "GOOGLE_API_KEY",
        "default_model": "gemini-2.0-flash",
    },
    # Ollama - runs locally, no key
    "ollama": {
        "base_url": os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1"),
        "env_key": None,
        "default_model": "llama3.2",
    },
    # OpenAI - Paid
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "env_key": "OPENAI_API_KEY",
        "default_model": "gpt-4o-mini",
    },
}

# Placeholder keys shipped in example .env files
PLACEHOLDER_KEYS = {"your-openai-api-key-here", "your-api-key-here"}

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError)


class OpenAICompatibleProvider:
    """Chat-completions provider for Groq, Grok, Ollama and OpenAI."""

    def __init__(
        self,
        name: str,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        timeout: float = REWRITE_TIMEOUT_SECONDS,
        max_tokens: int = 200,
        temperature: float = 0.3
    ):
        self.name = name
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=4),
        reraise=True
    )
    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class GeminiProvider:
    """Google Gemini provider."""

    def __init__(self, api_key: str, model: str, max_tokens: int = 200, temperature: float = 0.3):
        self.name = "gemini"
        self.max_tokens = max_tokens
        self.temperature = temperature
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model)

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        response = await self.model.generate_content_async(
            f"{system_prompt}\n\n{user_prompt}",
            generation_config={
                "max_output_tokens": self.max_tokens,
                "temperature": self.temperature,
            }
        )
        return response.text or ""


def _api_key(config: dict) -> Optional[str]:
    env_key = config.get("env_key")
    if not env_key:
        return None
    value = os.getenv(env_key)
    if not value or value in PLACEHOLDER_KEYS:
        return None
    return value


def _ollama_running(base_url: str) -> bool:
    try:
        response = httpx.get(f"{base_url}/models", timeout=2.0)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


def _try_build_provider(name: str, model: Optional[str] = None) -> Optional[TextProvider]:
    """Build one provider from environment configuration, or None if unavailable."""
    config = PROVIDER_CONFIGS.get(name)
    if not config:
        logger.warning("unknown_rewrite_provider", provider=name)
        return None

    model_name = model or config["default_model"]

    if name == "gemini":
        api_key = _api_key(config)
        if not api_key:
            return None
        try:
            return GeminiProvider(api_key=api_key, model=model_name)
        except Exception as e:
            logger.warning("gemini_init_failed", error=str(e))
            return None

    if name == "ollama":
        if not _ollama_running(config["base_url"]):
            return None
        api_key = "ollama"  # Ollama doesn't need a real key
    else:
        api_key = _api_key(config)
        if not api_key:
            return None

    try:
        return OpenAICompatibleProvider(
            name=name, api_key=api_key, model=model_name, base_url=config.get("base_url")
        )
    except Exception as e:
        logger.warning("provider_init_failed", provider=name, error=str(e))
        return None


def build_provider_chain(order: Optional[str] = None) -> List[TextProvider]:
    """
    Build the ordered provider chain from environment configuration.
    Providers without credentials (or a running server, for Ollama) are left out.
    """
    order = order or os.getenv("REWRITE_PROVIDERS", DEFAULT_PROVIDER_ORDER)
    model = os.getenv("LLM_MODEL") or None
    names = [n.strip().lower() for n in order.split(",") if n.strip()]

    chain = []
    for name in names:
        provider = _try_build_provider(name, model if len(names) == 1 else None)
        if provider is not None:
            chain.append(provider)
            logger.info("rewrite_provider_ready", provider=name)

    if not chain:
        logger.warning("rewrite_local_only", message="No text provider available, using local sanitization")
    return chain


# ============================================================================
# REWRITING
# ============================================================================

def _term_pattern(term: str) -> re.Pattern:
    # Bounded by non-word characters so terms like "100%" still match whole
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE)


def sanitize_text(text: str, rules: RuleConfiguration) -> str:
    """
    Remove prohibited claims and words from text, whole-word and case-insensitive.
    Empty results become the retailer's default tag phrase.
    """
    sanitized = text
    # Longest first so phrases go before the single words inside them
    terms = sorted(rules.prohibited_claims + rules.prohibited_words, key=len, reverse=True)
    for term in terms:
        if term.strip():
            sanitized = _term_pattern(term.strip()).sub("", sanitized)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()
    return sanitized or rules.default_tag_phrase


def _clean_response(text: str) -> str:
    """Strip whitespace and wrapping quotes that models like to add."""
    cleaned = (text or "").strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned


async def rewrite_text(
    text: str,
    rules: RuleConfiguration,
    providers: Optional[Sequence[TextProvider]] = None,
    timeout: float = REWRITE_TIMEOUT_SECONDS
) -> RewriteOutcome:
    """
    Rewrite copy so it complies with the retailer rules.

    Each provider gets one call bounded by timeout; the first non-empty
    response wins. If none succeeds the text is sanitized locally. This
    function does not raise on provider failure.
    """
    errors: List[str] = []
    providers = list(providers or [])

    if providers:
        system_prompt = build_system_prompt(rules)
        user_prompt = build_user_prompt(text)

        for provider in providers:
            name = getattr(provider, "name", type(provider).__name__)
            try:
                response = await asyncio.wait_for(
                    provider.generate(system_prompt, user_prompt), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning("rewrite_provider_timeout", provider=name, timeout=timeout)
                errors.append(f"{name}: timed out after {timeout:g}s")
                continue
            except Exception as e:
                logger.error("rewrite_provider_failed", provider=name, error=str(e))
                errors.append(f"{name}: {e}")
                continue

            corrected = _clean_response(response)
            if corrected:
                logger.info("copy_rewritten", provider=name)
                return RewriteOutcome(text=corrected, provider=name, errors=errors)

            logger.warning("rewrite_provider_empty", provider=name)
            errors.append(f"{name}: empty response")

    sanitized = sanitize_text(text, rules)
    logger.info("copy_sanitized_locally", providers_tried=len(providers), errors=len(errors))
    return RewriteOutcome(text=sanitized, fallback_used=True, errors=errors)

