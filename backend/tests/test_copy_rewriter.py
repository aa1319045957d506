"""
Tests for the copy rewriter and its provider chain.
"""
import pytest
from creative_compliance.models import RuleConfiguration
from creative_compliance.services import copy_rewriter
from creative_compliance.services.copy_rewriter import (
    TextProvider,
    build_provider_chain,
    build_system_prompt,
    build_user_prompt,
    rewrite_text,
    sanitize_text
)

from conftest import FakeProvider


class TestSanitizeText:
    """Tests for local sanitization."""

    def test_removes_claims_and_words(self, rules):
        """Test prohibited terms are removed case-insensitively."""
        assert sanitize_text("The BEST deal, FREE delivery", rules) == "The deal, delivery"

    def test_whole_words_only(self, rules):
        """Test terms inside longer words are kept."""
        assert sanitize_text("Bestow freedom", rules) == "Bestow freedom"

    def test_symbol_terms(self, rules):
        """Test terms ending in symbols still match."""
        assert sanitize_text("100% juice", rules) == "juice"

    def test_multi_word_terms(self, rules):
        """Test phrases are removed as a unit."""
        assert sanitize_text("Clinically proven formula", rules) == "formula"

    def test_empty_result_becomes_default_tag(self, rules):
        """Test text made entirely of prohibited terms becomes the tag phrase."""
        assert sanitize_text("Free guaranteed", rules) == "Only at Tesco"


class TestPrompts:
    """Tests for prompt construction."""

    def test_system_prompt_lists_rules(self, rules):
        """Test the system prompt embeds the rule configuration."""
        prompt = build_system_prompt(rules)
        assert "Only at Tesco" in prompt
        assert "cheapest" in prompt
        assert "clinically proven" in prompt
        assert "Avoid superlatives" in prompt

    def test_system_prompt_with_empty_lists(self):
        """Test empty rule lists render as 'none'."""
        rules = RuleConfiguration(prohibited_words=[], tone_guidelines=[])
        prompt = build_system_prompt(rules)
        assert "Prohibited Words: none" in prompt

    def test_user_prompt_is_sanitized(self):
        """Test template and markup injection is stripped from the copy."""
        prompt = build_user_prompt("Best {system} <b>deal</b>")
        assert "{system}" not in prompt
        assert "<b>" not in prompt
        assert "deal" in prompt


class TestRewriteText:
    """Tests for the provider chain with local fallback."""

    @pytest.mark.asyncio
    async def test_first_provider_wins(self, rules):
        """Test the first non-empty response is used and later providers are not called."""
        first = FakeProvider(name="groq", response="Tasty strawberries")
        second = FakeProvider(name="gemini", response="Other copy")
        outcome = await rewrite_text("The best strawberries", rules, [first, second])
        assert outcome.text == "Tasty strawberries"
        assert outcome.provider == "groq"
        assert not outcome.fallback_used
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_empty_response_tries_next(self, rules):
        """Test blank answers fall through to the next provider."""
        empty = FakeProvider(name="groq", response="   ")
        good = FakeProvider(name="ollama", response="Tasty strawberries")
        outcome = await rewrite_text("The best strawberries", rules, [empty, good])
        assert outcome.provider == "ollama"
        assert outcome.errors == ["groq: empty response"]

    @pytest.mark.asyncio
    async def test_exception_tries_next(self, rules):
        """Test provider errors are recorded and skipped."""
        broken = FakeProvider(name="grok", error=RuntimeError("boom"))
        good = FakeProvider(name="openai", response="Tasty strawberries")
        outcome = await rewrite_text("The best strawberries", rules, [broken, good])
        assert outcome.provider == "openai"
        assert outcome.errors == ["grok: boom"]

    @pytest.mark.asyncio
    async def test_timeout_tries_next(self, rules):
        """Test slow providers are abandoned after the timeout."""
        slow = FakeProvider(name="gemini", response="Too late", delay=1)
        good = FakeProvider(name="openai", response="Tasty strawberries")
        outcome = await rewrite_text("The best strawberries", rules, [slow, good], timeout=0.05)
        assert outcome.provider == "openai"
        assert "timed out" in outcome.errors[0]

    @pytest.mark.asyncio
    async def test_all_providers_fail(self, rules):
        """Test local sanitization is used when every provider fails."""
        providers = [
            FakeProvider(name="groq", error=RuntimeError("down")),
            FakeProvider(name="gemini", response=""),
        ]
        outcome = await rewrite_text("The best strawberries", rules, providers)
        assert outcome.text == "The strawberries"
        assert outcome.fallback_used
        assert outcome.provider is None
        assert len(outcome.errors) == 2

    @pytest.mark.asyncio
    async def test_no_providers(self, rules):
        """Test an empty chain goes straight to sanitization."""
        outcome = await rewrite_text("Guaranteed fresh", rules, [])
        assert outcome.text == "fresh"
        assert outcome.fallback_used
        assert outcome.errors == []

    @pytest.mark.asyncio
    async def test_quotes_stripped(self, rules):
        """Test wrapping quotes from the model are removed."""
        provider = FakeProvider(response='"Tasty strawberries"')
        outcome = await rewrite_text("The best strawberries", rules, [provider])
        assert outcome.text == "Tasty strawberries"

    @pytest.mark.asyncio
    async def test_prompts_passed_to_provider(self, rules):
        """Test providers receive the rule-aware system prompt and the copy."""
        provider = FakeProvider()
        await rewrite_text("The best strawberries", rules, [provider])
        system_prompt, user_prompt = provider.calls[0]
        assert "Only at Tesco" in system_prompt
        assert "The best strawberries" in user_prompt

    def test_fake_provider_satisfies_protocol(self):
        """Test the provider protocol is structural."""
        assert isinstance(FakeProvider(), TextProvider)


class TestProviderChain:
    """Tests for building the provider chain from the environment."""

    def test_no_keys_means_empty_chain(self, monkeypatch):
        """Test providers without credentials are left out."""
        for key in ("GROQ_API_KEY", "XAI_API_KEY", "GOOGLE_API_KEY", "OPENAI_API_KEY"):
            monkeypatch.delenv(key, raising=False)
        assert build_provider_chain("groq,grok,gemini,openai") == []

    def test_placeholder_key_ignored(self, monkeypatch):
        """Test example placeholder keys do not count as configured."""
        monkeypatch.setenv("OPENAI_API_KEY", "your-openai-api-key-here")
        assert build_provider_chain("openai") == []

    def test_unknown_provider_ignored(self):
        """Test unknown provider names are skipped."""
        assert build_provider_chain("carrier-pigeon") == []

    def test_configured_provider_built_in_order(self, monkeypatch):
        """Test configured providers appear in the requested order."""
        monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.delenv("LLM_MODEL", raising=False)
        chain = build_provider_chain("openai, groq")
        assert [p.name for p in chain] == ["openai", "groq"]
        assert chain[1].model == copy_rewriter.PROVIDER_CONFIGS["groq"]["default_model"]

    def test_ollama_skipped_when_not_running(self, monkeypatch):
        """Test Ollama is only used when its server answers."""
        monkeypatch.setattr(copy_rewriter, "_ollama_running", lambda base_url: False)
        assert build_provider_chain("ollama") == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
