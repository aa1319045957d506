"""
Pytest configuration and fixtures for backend tests
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from creative_compliance.main import app
from creative_compliance.models import RuleConfiguration
from creative_compliance.routes.compliance import text_providers


class FakeProvider:
    """Text provider returning a canned response, recording every call."""

    def __init__(self, name="fake", response="Fresh summer flavours", error=None, delay=0):
        self.name = name
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


def text_element(content, top=400, font_size=24, color="#000000", height=30, **extra):
    """Text element in the wire format used by the editor."""
    element = {
        "kind": "text",
        "content": content,
        "left": 100,
        "top": top,
        "width": 200,
        "height": height,
        "font_size": font_size,
        "color": color,
        "font_family": "Arial",
        "scale_x": 1,
        "scale_y": 1,
    }
    element.update(extra)
    return element


def make_scene(*elements, height=1080, width=1080, background_color="#FFFFFF"):
    return {
        "width": width,
        "height": height,
        "background_color": background_color,
        "elements": list(elements),
    }


@pytest.fixture
def rules():
    """Default Tesco rule set"""
    return RuleConfiguration()


@pytest.fixture
def client():
    """Create a test client with no text providers configured"""
    app.dependency_overrides[text_providers] = lambda: []
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def compliant_scene():
    """Scene that passes every check under the default rules"""
    return make_scene(
        text_element("Fresh strawberries, picked this morning", top=300),
        text_element("Only at Tesco", top=400),
        text_element("Selected stores. While stocks last.", top=700, font_size=20),
    )


@pytest.fixture
def violating_scene():
    """Scene carrying most violation kinds under the default rules"""
    return make_scene(
        text_element("Sample Headline", top=50, font_size=16, color="#ffffff"),
        text_element("Sample CTA", top=900, font_size=18, color="#999999"),
        text_element("Small text", top=400, font_size=16),
        text_element("Only at Tesc", top=400),
        text_element("Low contrast", top=400, color="#cccccc"),
        text_element(
            "This is a substantial headline text that requires a disclaimer "
            "to be compliant with retailer guidelines",
            top=400, height=50
        ),
    )
