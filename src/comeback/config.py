"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # System Configuration
    api_v1_prefix: str = "/api/v1"
    debug: bool = False
    cors_origins: str = "http://localhost:3000,http://localhost:4173"
    rate_limit_enabled: bool = True

    # Supabase Configuration
    supabase_url: str = "https://test.supabase.co"
    supabase_anon_key: str = "test-anon-key"
    supabase_service_role_key: str = "test-service-role-key"

    # JWT Verification Configuration
    use_local_jwt_verification: bool = True
    jwks_cache_ttl_seconds: int = 3600  # 1 hour
    jwt_audience: str = "authenticated"
    jwt_leeway_seconds: int = 10  # Clock skew tolerance

    # Session / OAuth
    session_cookie_name: str = "sb-access-token"
    session_cookie_max_age_seconds: int = 60 * 60 * 24 * 7
    session_storage_path: str = ".comeback/session.json"
    session_storage_key: str = "userStore"
    login_path: str = "/authentification"
    oauth_redirect_path: str = "/api/v1/auth/callback"
    oauth_default_provider: str = "google"
    oauth_verifier_cookie_name: str = "sb-code-verifier"
    oauth_verifier_max_age_seconds: int = 600  # sign-in must finish within 10 minutes
    default_user_name: str = "Utilisateur"

    # Route guard timing
    auth_init_timeout_seconds: float = 2.0
    admin_auth_init_timeout_seconds: float = 3.0  # admin needs more downstream verification
    auth_max_retry_attempts: int = 15
    auth_retry_delay_seconds: float = 0.1
    dev_user_lookup_timeout_seconds: float = 2.0  # only applied when debug is on

    # PostHog Configuration
    posthog_api_key: str | None = None
    posthog_host: str = "https://app.posthog.com"


settings = Settings()
