"""Provider templates and the declarative per-provider override table.

Two tables live here:

* :data:`PROVIDER_TEMPLATES` -- ready-made endpoint/scope presets for common
  providers, turned into an :class:`~oauthflow.models.AuthorizationConfig`
  by :func:`apply_template`.
* :data:`PROVIDER_OVERRIDES` -- provider quirks consulted by
  :func:`~oauthflow.auth.request_builder.build_authorization_url`. Core
  logic never branches on a provider name; it looks the provider up here
  and applies whatever the :class:`ProviderOverride` declares.
"""

from __future__ import annotations

from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from oauthflow.exceptions import ConfigurationError
from oauthflow.models import AuthorizationConfig

DEFAULT_REDIRECT_URI = "http://localhost:3000/oauth-callback.html"


class ProviderOverride(BaseModel):
    """Quirks applied to the authorization request for one provider.

    Attributes:
        redirect_uri: Redirect URI the provider insists on, replacing the
            configured one for both the authorize URL and the exchange.
        scope_separator: Separator used to join scopes.
        extra_authorize_params: Additional query parameters appended to the
            authorize URL after the standard ones.
        requires_client_secret: The provider rejects public clients, so a
            configuration without a secret fails before the surface opens.
    """

    model_config = ConfigDict(frozen=True)

    redirect_uri: Optional[str] = None
    scope_separator: str = " "
    extra_authorize_params: dict[str, str] = Field(default_factory=dict)
    requires_client_secret: bool = False


class ProviderTemplate(BaseModel):
    """Preset endpoints and scopes for a well-known provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    authorize_url: str
    token_url: str
    scopes: list[str] = Field(default_factory=list)
    flow: Literal["authorization_code", "pkce"]
    requires_client_secret: bool
    documentation: str
    test_endpoints: list[str] = Field(default_factory=list)
    redirect_uri_note: Optional[str] = None


_IBM_OIDC_DOCS = (
    "https://www.ibm.com/docs/en/sva/10.0.0?topic=authentication-openid-connect-oidc-overview"
)

PROVIDER_TEMPLATES: dict[str, ProviderTemplate] = {
    "google": ProviderTemplate(
        name="Google APIs",
        description="Access Google services (Gmail, Calendar, Drive, etc.)",
        authorize_url="https://accounts.google.com/o/oauth2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=[
            "https://www.googleapis.com/auth/userinfo.profile",
            "https://www.googleapis.com/auth/userinfo.email",
        ],
        flow="pkce",
        requires_client_secret=False,
        documentation="https://developers.google.com/identity/protocols/oauth2",
        test_endpoints=["https://www.googleapis.com/oauth2/v2/userinfo"],
    ),
    "google_calendar": ProviderTemplate(
        name="Google Calendar API",
        description="Access and manage Google Calendar events",
        authorize_url="https://accounts.google.com/o/oauth2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=[
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/calendar.events",
        ],
        flow="pkce",
        requires_client_secret=False,
        documentation="https://developers.google.com/calendar/api/guides/auth",
        test_endpoints=["https://www.googleapis.com/calendar/v3/calendars/primary/events"],
    ),
    "google_gmail": ProviderTemplate(
        name="Gmail API",
        description="Access and manage Gmail messages",
        authorize_url="https://accounts.google.com/o/oauth2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=[
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/gmail.send",
        ],
        flow="pkce",
        requires_client_secret=False,
        documentation="https://developers.google.com/gmail/api/guides/auth",
        test_endpoints=["https://gmail.googleapis.com/gmail/v1/users/me/messages"],
    ),
    "microsoft": ProviderTemplate(
        name="Microsoft Graph",
        description="Access Microsoft 365 services (Outlook, OneDrive, Teams)",
        authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        scopes=["https://graph.microsoft.com/User.Read", "https://graph.microsoft.com/Mail.Read"],
        flow="pkce",
        requires_client_secret=False,
        documentation="https://docs.microsoft.com/en-us/graph/auth-v2-user",
        test_endpoints=["https://graph.microsoft.com/v1.0/me"],
    ),
    "github": ProviderTemplate(
        name="GitHub API",
        description="Access GitHub repositories, issues, and user data",
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        scopes=["user:email", "repo", "read:org"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation=(
            "https://docs.github.com/en/developers/apps/building-oauth-apps/authorizing-oauth-apps"
        ),
        test_endpoints=["https://api.github.com/user"],
    ),
    "slack": ProviderTemplate(
        name="Slack API",
        description="Access Slack workspaces, channels, and messages",
        authorize_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        scopes=["users:read", "channels:read", "chat:write"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation="https://api.slack.com/authentication/oauth-v2",
        test_endpoints=["https://slack.com/api/auth.test"],
    ),
    "linkedin": ProviderTemplate(
        name="LinkedIn API",
        description="Access LinkedIn profile and company data",
        authorize_url="https://www.linkedin.com/oauth/v2/authorization",
        token_url="https://www.linkedin.com/oauth/v2/accessToken",
        scopes=["r_liteprofile", "r_emailaddress", "w_member_social"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation=(
            "https://docs.microsoft.com/linkedin/shared/authentication/authorization-code-flow"
        ),
        test_endpoints=["https://api.linkedin.com/v2/me"],
    ),
    "twitter": ProviderTemplate(
        name="Twitter API v2",
        description="Access Twitter tweets, users, and timeline data",
        authorize_url="https://twitter.com/i/oauth2/authorize",
        token_url="https://api.twitter.com/2/oauth2/token",
        scopes=["tweet.read", "users.read", "follows.read"],
        flow="pkce",
        requires_client_secret=False,
        documentation=(
            "https://developer.twitter.com/en/docs/authentication/oauth-2-0/authorization-code"
        ),
        test_endpoints=["https://api.twitter.com/2/users/me"],
    ),
    "discord": ProviderTemplate(
        name="Discord API",
        description="Access Discord servers, channels, and user data",
        authorize_url="https://discord.com/api/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        scopes=["identify", "email", "guilds"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation="https://discord.com/developers/docs/topics/oauth2",
        test_endpoints=["https://discord.com/api/users/@me"],
    ),
    "dropbox": ProviderTemplate(
        name="Dropbox API",
        description="Access Dropbox files and folder structure",
        authorize_url="https://www.dropbox.com/oauth2/authorize",
        token_url="https://api.dropboxapi.com/oauth2/token",
        scopes=[],  # app permissions instead of scopes
        flow="pkce",
        requires_client_secret=False,
        documentation="https://developers.dropbox.com/oauth-guide",
        test_endpoints=["https://api.dropboxapi.com/2/users/get_current_account"],
    ),
    "spotify": ProviderTemplate(
        name="Spotify Web API",
        description="Access Spotify music data, playlists, and user library",
        authorize_url="https://accounts.spotify.com/authorize",
        token_url="https://accounts.spotify.com/api/token",
        scopes=["user-read-private", "user-read-email", "playlist-read-private"],
        flow="pkce",
        requires_client_secret=False,
        documentation=(
            "https://developer.spotify.com/documentation/general/guides/authorization/code-flow/"
        ),
        test_endpoints=["https://api.spotify.com/v1/me"],
        redirect_uri_note=(
            "Spotify requires an explicit loopback IP and the underscore callback path: "
            "http://127.0.0.1:3000/oauth_callback.html"
        ),
    ),
    "ibm_sso_oidc": ProviderTemplate(
        name="IBM SSO OIDC",
        description="IBM Single Sign-On with OpenID Connect for enterprise authentication",
        authorize_url="https://login.ibm.com/oidc/endpoint/default/authorize",
        token_url="https://login.ibm.com/oidc/endpoint/default/token",
        scopes=["openid", "profile", "email"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation=_IBM_OIDC_DOCS,
        test_endpoints=["https://login.ibm.com/oidc/endpoint/default/userinfo"],
        redirect_uri_note="The redirect URI must match the one registered for the application.",
    ),
    "ibm_sso_oidc_custom": ProviderTemplate(
        name="IBM SSO OIDC (Custom Domain)",
        description="IBM SSO OIDC with custom enterprise domain",
        authorize_url="https://your-domain.ibm.com/oidc/endpoint/default/authorize",
        token_url="https://your-domain.ibm.com/oidc/endpoint/default/token",
        scopes=["openid", "profile", "email"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation=_IBM_OIDC_DOCS,
        redirect_uri_note="Replace 'your-domain.ibm.com' with your enterprise domain.",
    ),
    "ibm_sso_oidc_w3id": ProviderTemplate(
        name="IBM SSO OIDC (w3id)",
        description="IBM SSO OIDC using w3id.sso.ibm.com endpoint",
        authorize_url="https://w3id.sso.ibm.com/oidc/endpoint/default/authorize",
        token_url="https://w3id.sso.ibm.com/oidc/endpoint/default/token",
        scopes=["openid", "profile", "email"],
        flow="authorization_code",
        requires_client_secret=True,
        documentation=_IBM_OIDC_DOCS,
        test_endpoints=["https://w3id.sso.ibm.com/oidc/endpoint/default/userinfo"],
    ),
}

PROVIDER_OVERRIDES: dict[str, ProviderOverride] = {
    "spotify": ProviderOverride(redirect_uri="http://127.0.0.1:3000/oauth_callback.html"),
    **{
        key: ProviderOverride(requires_client_secret=True)
        for key, template in PROVIDER_TEMPLATES.items()
        if template.requires_client_secret
    },
}

_NO_OVERRIDE = ProviderOverride()


def get_override(
    provider: Optional[str],
    table: Optional[Mapping[str, ProviderOverride]] = None,
) -> ProviderOverride:
    """Return the override entry for *provider*, or an empty override."""
    if not provider:
        return _NO_OVERRIDE
    overrides = PROVIDER_OVERRIDES if table is None else table
    return overrides.get(provider, _NO_OVERRIDE)


def get_template(key: str) -> ProviderTemplate:
    """Look up a provider template.

    Raises:
        ConfigurationError: If *key* is not a known template.
    """
    template = PROVIDER_TEMPLATES.get(key)
    if template is None:
        available = ", ".join(sorted(PROVIDER_TEMPLATES))
        raise ConfigurationError(
            f"OAuth2 provider template '{key}' not found. Available: {available}"
        )
    return template


def apply_template(
    key: str,
    client_id: str,
    client_secret: Optional[str] = None,
    *,
    client_secret_source: Optional[str] = None,
    redirect_uri: Optional[str] = None,
) -> AuthorizationConfig:
    """Build an :class:`~oauthflow.models.AuthorizationConfig` from a template.

    The secret is dropped for templates that do not need one, and the
    redirect URI comes from the override table when the provider pins it.
    """
    template = get_template(key)
    override = get_override(key)
    needs_secret = template.requires_client_secret
    return AuthorizationConfig(
        authorize_url=template.authorize_url,
        token_url=template.token_url,
        client_id=client_id,
        client_secret=client_secret if needs_secret else None,
        client_secret_source=client_secret_source if needs_secret else None,
        scopes=list(template.scopes),
        redirect_uri=override.redirect_uri or redirect_uri or DEFAULT_REDIRECT_URI,
        use_pkce=template.flow == "pkce",
        provider=key,
    )
