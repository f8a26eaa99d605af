"""Configuration management for token-keeper.

Loads client settings from the environment (and .env) and OAuth2 provider
profiles from config/providers.yaml.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from token_keeper.models.auth import ClientIdentity


CREDENTIALS_FILENAME = ".gdrive-server-credentials.json"
KEYS_FILENAME = "gcp-oauth.keys.json"

# Used when no config/providers.yaml can be found (e.g. an installed wheel)
DEFAULT_PROVIDERS: dict[str, dict] = {
    "google": {
        "auth_endpoint": "https://accounts.google.com/o/oauth2/auth",
        "token_endpoint": "https://oauth2.googleapis.com/token",
        "scopes": [
            "https://www.googleapis.com/auth/drive",
            "https://www.googleapis.com/auth/spreadsheets",
            "https://www.googleapis.com/auth/documents",
            "https://www.googleapis.com/auth/drive.file",
        ],
    },
}


class ProviderProfile(BaseModel):
    """A single OAuth2 provider's endpoints and default scopes."""
    auth_endpoint: str
    token_endpoint: str
    scopes: list[str] = Field(default_factory=list)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""
    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: str = Field(default="", description="OAuth client secret")
    redirect_uri: str = Field(default="http://localhost", description="OAuth redirect target")
    provider: str = Field(default="google", description="Provider profile name")
    scopes: list[str] = Field(default_factory=list, description="Scope override; empty = provider defaults")
    creds_dir: str = Field(default="./credentials", description="Directory holding the credential record")
    credentials_file: str = Field(default=CREDENTIALS_FILENAME, description="Credential record file name")
    keys_file: str = Field(default=KEYS_FILENAME, description="OAuth application keys file name")
    interactive: bool = Field(default=True, description="Whether interactive consent may run")
    refresh_interval: int = Field(default=45 * 60, description="Background refresh period in seconds")
    exchange_timeout: float = Field(default=60.0, description="Deadline for network exchanges in seconds")
    credentials_json: str = Field(default="", description="Injected token record JSON")
    oauth_keys_json: str = Field(default="", description="Injected OAuth application keys JSON")


class Config(BaseModel):
    """Full application configuration."""
    settings: Settings
    providers: dict[str, ProviderProfile]

    def get_provider(self, name: str | None = None) -> ProviderProfile:
        """Get a provider profile by name (defaults to the configured one)."""
        name = (name or self.settings.provider).lower()
        if name not in self.providers:
            available = ", ".join(sorted(self.providers.keys()))
            raise ValueError(f"Unknown provider '{name}'. Available: {available}")
        return self.providers[name]

    @property
    def scopes(self) -> list[str]:
        """Requested scopes: the explicit override, else the provider defaults."""
        return list(self.settings.scopes) or list(self.get_provider().scopes)

    @property
    def credentials_path(self) -> Path:
        return Path(self.settings.creds_dir) / self.settings.credentials_file

    @property
    def keys_path(self) -> Path:
        return Path(self.settings.creds_dir) / self.settings.keys_file

    @property
    def identity(self) -> ClientIdentity | None:
        """Client identity from settings, or None when not configured here."""
        if not (self.settings.client_id and self.settings.client_secret):
            return None
        return ClientIdentity(
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            redirect_uri=self.settings.redirect_uri,
        )


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (where config/ lives)."""
    current = Path(__file__).resolve().parent
    for parent in [current, *current.parents]:
        if (parent / "config" / "providers.yaml").exists():
            return parent
    # Fallback: cwd
    return Path.cwd()


def _load_providers(project_root: Path) -> dict[str, ProviderProfile]:
    """Load provider profiles from providers.yaml, or the built-in defaults."""
    providers_path = project_root / "config" / "providers.yaml"
    data: dict = {"providers": DEFAULT_PROVIDERS}
    if providers_path.exists():
        with open(providers_path) as f:
            data = yaml.safe_load(f) or {}

    providers = {}
    for name, profile_data in data.get("providers", {}).items():
        providers[name.lower()] = ProviderProfile(**profile_data)
    return providers


def _env(*keys: str, default: str = "") -> str:
    """Try multiple env var names, return the first one found."""
    for key in keys:
        val = os.environ.get(key, "")
        if val:
            return val.strip().strip('"')
    return default


def _is_truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _resolve_creds_dir() -> str:
    """Credentials directory: explicit setting, else the hosting platform's app dir."""
    explicit = _env("TOKEN_KEEPER_CREDS_DIR", "GDRIVE_CREDS_DIR")
    if explicit:
        return explicit
    if os.environ.get("RAILWAY_ENVIRONMENT"):
        return "/app"
    if os.environ.get("RENDER"):
        return "/opt/render/project/src"
    return "./credentials"


def detect_interactive() -> bool:
    """Whether this deployment may launch an interactive consent flow.

    TOKEN_KEEPER_INTERACTIVE wins when set. Otherwise hosted platforms
    (Render, Railway) and production environments are headless.
    """
    explicit = _env("TOKEN_KEEPER_INTERACTIVE")
    if explicit:
        return _is_truthy(explicit)
    if os.environ.get("RENDER") or os.environ.get("RAILWAY_ENVIRONMENT"):
        return False
    if _env("APP_ENV", "NODE_ENV").lower() == "production":
        return False
    return True


def _split_scopes(raw: str) -> list[str]:
    return [s for s in raw.replace(",", " ").split() if s]


def _load_settings() -> Settings:
    """Load settings from environment variables.

    Supports both TOKEN_KEEPER_* and the bare names used by hosting templates.
    """
    return Settings(
        client_id=_env("TOKEN_KEEPER_CLIENT_ID", "CLIENT_ID"),
        client_secret=_env("TOKEN_KEEPER_CLIENT_SECRET", "CLIENT_SECRET"),
        redirect_uri=_env("TOKEN_KEEPER_REDIRECT_URI", "REDIRECT_URI", default="http://localhost"),
        provider=_env("TOKEN_KEEPER_PROVIDER", default="google"),
        scopes=_split_scopes(_env("TOKEN_KEEPER_SCOPES")),
        creds_dir=_resolve_creds_dir(),
        interactive=detect_interactive(),
        refresh_interval=int(_env("TOKEN_KEEPER_REFRESH_INTERVAL", default=str(45 * 60))),
        exchange_timeout=float(_env("TOKEN_KEEPER_EXCHANGE_TIMEOUT", default="60")),
        # JSON blobs are read raw; stripping quotes would corrupt them
        credentials_json=os.environ.get("GDRIVE_CREDENTIALS_JSON", "").strip(),
        oauth_keys_json=os.environ.get("GCP_OAUTH_KEYS_JSON", "").strip(),
    )


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Load and cache the full application configuration."""
    project_root = _find_project_root()

    # Load .env from project root if it exists
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    settings = _load_settings()
    providers = _load_providers(project_root)

    return Config(settings=settings, providers=providers)
