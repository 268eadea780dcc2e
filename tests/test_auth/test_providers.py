"""Tests for provider templates and the override table."""

from __future__ import annotations

import pytest

from oauthflow.auth.providers import (
    DEFAULT_REDIRECT_URI,
    PROVIDER_OVERRIDES,
    PROVIDER_TEMPLATES,
    ProviderOverride,
    apply_template,
    get_override,
    get_template,
)
from oauthflow.exceptions import ConfigurationError


class TestTemplates:
    def test_known_keys(self) -> None:
        for key in ("google", "github", "spotify", "microsoft", "ibm_sso_oidc_w3id"):
            assert key in PROVIDER_TEMPLATES

    def test_unknown_template(self) -> None:
        with pytest.raises(ConfigurationError, match="Available: "):
            get_template("myspace")

    def test_every_template_has_endpoints(self) -> None:
        for template in PROVIDER_TEMPLATES.values():
            assert template.authorize_url.startswith("https://")
            assert template.token_url.startswith("https://")


class TestApplyTemplate:
    def test_pkce_template(self) -> None:
        config = apply_template("google", "cid", client_secret="ignored")
        assert config.use_pkce is True
        assert config.client_secret is None
        assert config.provider == "google"
        assert config.redirect_uri == DEFAULT_REDIRECT_URI
        assert config.scopes == PROVIDER_TEMPLATES["google"].scopes

    def test_secret_template_keeps_secret(self) -> None:
        config = apply_template("github", "cid", client_secret_source="env:GH")
        assert config.use_pkce is False
        assert config.client_secret_source == "env:GH"
        assert config.has_secret

    def test_explicit_redirect(self) -> None:
        config = apply_template("google", "cid", redirect_uri="http://localhost:3005/callback")
        assert config.redirect_uri == "http://localhost:3005/callback"

    def test_override_redirect_wins(self) -> None:
        config = apply_template("spotify", "cid", redirect_uri="http://localhost:3000/x")
        assert config.redirect_uri == "http://127.0.0.1:3000/oauth_callback.html"


class TestOverrides:
    def test_no_provider(self) -> None:
        assert get_override(None) == ProviderOverride()

    def test_secret_required_for_confidential_templates(self) -> None:
        assert PROVIDER_OVERRIDES["github"].requires_client_secret is True
        assert "google" not in PROVIDER_OVERRIDES

    def test_custom_table(self) -> None:
        table = {"acme": ProviderOverride(scope_separator=",")}
        assert get_override("acme", table).scope_separator == ","
        assert get_override("spotify", table) == ProviderOverride()
