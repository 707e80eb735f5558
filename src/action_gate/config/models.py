"""Pydantic models for service configuration. Built once at startup, read-only afterwards."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# --- Identity providers ---

ProviderKind = Literal["google", "salesforce"]


class ProviderConfig(BaseModel):
    """OAuth client registration for one third-party API."""

    model_config = ConfigDict(frozen=True)

    kind: ProviderKind = Field(..., description="Which data API the tokens are used for")
    display_name: str = Field(..., description="Shown in the login prompt, e.g. Gmail")
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = Field(..., description="Where the provider sends the user back (the /oauth2callback URL)")
    authorize_url: str
    token_url: str
    scopes: list[str] = Field(default_factory=list)
    # Extra query parameters for the authorize URL (e.g. access_type=offline)
    authorize_params: dict[str, str] = Field(default_factory=dict)
    # Used when the token response carries no expires_in (Salesforce)
    default_token_lifetime_s: int = Field(default=3600, gt=0)


GOOGLE_DEFAULTS = {
    "kind": "google",
    "display_name": "Gmail",
    "authorize_url": "https://accounts.google.com/o/oauth2/v2/auth",
    "token_url": "https://oauth2.googleapis.com/token",
    "scopes": ["https://www.googleapis.com/auth/gmail.readonly"],
    "authorize_params": {"access_type": "offline", "prompt": "consent"},
}

SALESFORCE_DEFAULTS = {
    "kind": "salesforce",
    "display_name": "Salesforce",
    "authorize_url": "https://login.salesforce.com/services/oauth2/authorize",
    "token_url": "https://login.salesforce.com/services/oauth2/token",
    "scopes": ["api", "refresh_token"],
}


# --- Messaging platform ---


class PlatformConfig(BaseModel):
    """The chat platform the app is registered with."""

    model_config = ConfigDict(frozen=True)

    app_id: str = Field(..., description="This app's identity; foreign actions are ignored")
    app_secret: str = ""
    webhook_secret: str = ""
    api_url: str = Field(default="https://api.watsonwork.ibm.com")
    webhook_path: str = Field(default="/messages")
    verify_signatures: bool = True


# --- Refresh loop ---


class RefreshConfig(BaseModel):
    """Timing of the background token refresh."""

    model_config = ConfigDict(frozen=True)

    margin_ms: int = Field(default=60_000, ge=0, description="Refresh this long before expiry")
    # Replaces the computed delay entirely when set
    interval_override_ms: int | None = Field(default=None, ge=0)
    conflict_retries: int = Field(default=3, ge=1)


# --- Top-level ---


class AppConfig(BaseModel):
    """Full service configuration loaded from YAML."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="action-gate")
    platform: PlatformConfig
    provider: ProviderConfig
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    store: str = Field(default="memory", description='"memory" or a directory for per-user JSON documents')
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    callback_message: str = Field(
        default="Login successful, you may close this window and return to your conversation.",
    )
