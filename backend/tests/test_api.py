"""
Integration tests for API endpoints.
Tests the complete check -> fix -> check flow.
"""
import pytest
from fastapi.testclient import TestClient

import creative_compliance.main as main_module
from creative_compliance.main import app
from creative_compliance.routes.compliance import text_providers

from conftest import FakeProvider, make_scene, text_element


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client):
        """Test health endpoint returns healthy status."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["services"]["rewrite_providers"] == []
        assert data["services"]["llm_available"] is False

    def test_api_info(self, client):
        """Test API info endpoint."""
        response = client.get("/api/info")
        assert response.status_code == 200
        data = response.json()
        assert "endpoints" in data
        assert data["endpoints"]["compliance"]["check"] == "POST /compliance/check"

    def test_providers_built_once_at_startup(self, monkeypatch):
        """Test the provider chain is built in the lifespan and shared by requests."""
        builds = []

        def fake_chain():
            builds.append(1)
            return [FakeProvider(name="groq")]

        monkeypatch.setattr(main_module, "build_provider_chain", fake_chain)
        with TestClient(app) as started:
            first = started.get("/").json()
            second = started.get("/").json()

        assert first["services"]["rewrite_providers"] == ["groq"]
        assert second["services"]["llm_available"] is True
        assert builds == [1]
        assert app.state.text_providers == ()

    def test_no_providers_before_startup(self, monkeypatch):
        """Test requests served without the lifespan see an empty chain."""
        monkeypatch.setattr(app.state, "text_providers", (), raising=False)
        response = TestClient(app).get("/")
        assert response.status_code == 200
        assert response.json()["services"]["rewrite_providers"] == []


class TestCheckEndpoint:
    """Tests for scene checking."""

    def test_check_compliant_scene(self, client, compliant_scene):
        """Test a clean scene returns no violations."""
        response = client.post("/compliance/check", json={"scene": compliant_scene})
        assert response.status_code == 200
        data = response.json()
        assert data["violations"] == []
        assert data["summary"]["ok"] is True

    def test_check_violating_scene(self, client, violating_scene):
        """Test violations are returned with directives and a summary."""
        response = client.post("/compliance/check", json={"scene": violating_scene})
        assert response.status_code == 200
        data = response.json()
        ids = [v["id"] for v in data["violations"]]
        assert "text_unsafe_top_1" in ids
        assert "missing_tag_text" in ids
        assert data["summary"]["ok"] is False
        assert data["summary"]["total"] == len(ids)

        tag = next(v for v in data["violations"] if v["id"] == "tag_text_incorrect_4")
        assert tag["fix_directive"] == {"kind": "rewrite_text", "reason": "tag_incorrect"}
        assert tag["element_index"] == 3
        assert tag["severity"] == "high"

    def test_check_malformed_scene(self, client):
        """Test malformed scenes return an empty list instead of an error."""
        response = client.post("/compliance/check", json={"scene": {"elements": "nope"}})
        assert response.status_code == 200
        assert response.json()["violations"] == []

    def test_check_camel_case_scene(self, client):
        """Test editor payloads with camelCase fields are checked as sent."""
        scene = {
            "backgroundColor": "#000000",
            "elements": [{
                "kind": "text", "content": "Only at Tesco", "left": 100, "top": 400,
                "width": 200, "height": 50, "fontSize": 40, "color": "#FFFFFF",
                "scaleX": 1, "scaleY": 1, "fontFamily": "Arial",
            }]
        }
        response = client.post("/compliance/check", json={"scene": scene})
        assert response.status_code == 200
        assert response.json()["violations"] == []

    def test_fixed_scene_returned_in_camel_case(self, client):
        """Test fixed scenes come back with the editor's field names."""
        scene = make_scene(text_element("Only at Tesco", font_size=12))
        check = client.post("/compliance/check", json={"scene": scene}).json()
        data = client.post("/compliance/fix", json={"scene": scene, "violations": check["violations"]}).json()
        element = data["scene"]["elements"][0]
        assert data["scene"]["backgroundColor"] == "#FFFFFF"
        assert element["fontSize"] == 20
        assert element["scaleX"] == 1

    def test_check_unknown_retailer_uses_defaults(self, client, compliant_scene):
        """Test an unknown retailer falls back to the default rule set."""
        response = client.post("/compliance/check", json={"scene": compliant_scene, "retailer": "Nowhere"})
        assert response.status_code == 200


class TestFixEndpoint:
    """Tests for auto-fixing."""

    def test_check_fix_check(self, client, violating_scene):
        """Test fixing the reported violations gives a clean scene."""
        check = client.post("/compliance/check", json={"scene": violating_scene}).json()

        response = client.post("/compliance/fix", json={
            "scene": violating_scene,
            "violations": check["violations"]
        })
        assert response.status_code == 200
        data = response.json()
        assert "tag_text_incorrect_4" in data["applied"]
        assert data["warnings"]

        recheck = client.post("/compliance/check", json={"scene": data["scene"]}).json()
        assert recheck["violations"] == []

    def test_fix_without_violations(self, client, compliant_scene):
        """Test an empty violation list is rejected."""
        response = client.post("/compliance/fix", json={"scene": compliant_scene, "violations": []})
        assert response.status_code == 400

    def test_fix_uses_configured_provider(self, client):
        """Test rewrites go through the injected provider chain."""
        provider = FakeProvider(response="Tasty strawberries")
        app.dependency_overrides[text_providers] = lambda: [provider]
        scene = make_scene(text_element("The best strawberries"), text_element("Only at Tesco"))
        check = client.post("/compliance/check", json={"scene": scene}).json()

        response = client.post("/compliance/fix", json={"scene": scene, "violations": check["violations"]})
        assert response.status_code == 200
        assert response.json()["scene"]["elements"][0]["content"] == "Tasty strawberries"
        assert provider.calls

    def test_fix_invalid_scene(self, client):
        """Test a scene that cannot be parsed is rejected by validation."""
        response = client.post("/compliance/fix", json={
            "scene": {"elements": "nope"},
            "violations": [{"id": "missing_tag_text", "message": "x"}]
        })
        assert response.status_code == 422


class TestFixCopyEndpoint:
    """Tests for rewriting a single piece of copy."""

    def test_fix_copy_local_fallback(self, client):
        """Test copy is sanitized locally without providers."""
        response = client.post("/compliance/fix-copy", json={"text": "The best strawberries"})
        assert response.status_code == 200
        data = response.json()
        assert data["text"] == "The strawberries"
        assert data["fallback_used"] is True

    def test_fix_copy_empty_text(self, client):
        """Test empty text is rejected."""
        response = client.post("/compliance/fix-copy", json={"text": ""})
        assert response.status_code == 422


class TestRulesEndpoint:
    """Tests for the rules endpoint."""

    def test_get_rules(self, client):
        """Test getting the default rule set."""
        response = client.get("/compliance/rules")
        assert response.status_code == 200
        data = response.json()
        assert data["retailer"] == "Tesco"
        assert data["min_font_size"] == 20
        assert "Only at Tesco" in data["allowed_tag_phrases"]

    def test_get_rules_for_retailer(self, client):
        """Test unknown retailers get defaults under their own name."""
        response = client.get("/compliance/rules", params={"retailer": "Lidl"})
        assert response.status_code == 200
        assert response.json()["retailer"] == "Lidl"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
