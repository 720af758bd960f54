from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_secret_key: str = ""

    # Apple Developer
    apple_team_id: str = ""
    apple_pass_type_id: str = ""

    # Pass signing certificates
    cert_path: str = "certs/signerCert.pem"
    key_path: str = "certs/signerKey.pem"
    wwdr_path: str = "certs/wwdr.pem"
    cert_password: str | None = None

    # Server (callback root devices poll against)
    base_url: str = "http://localhost:8000"

    # Business
    organization_name: str = "Loyalty Card"

    # APNs token authentication (.p8 key)
    apns_key_path: str = ""
    apns_key_id: str = ""
    apns_team_id: str = ""  # Falls back to apple_team_id
    apns_use_sandbox: bool = False
    apns_send_timeout: float = 10.0

    # Template working area
    pass_template_dir: str = "templates/loyalty.pass"
    pass_work_dir: str | None = None  # None = system temp dir
    isolate_pass_assets: bool = True
    asset_download_timeout: float = 10.0
    asset_lock_timeout: float = 30.0

    # Database webhook shared secret (X-Webhook-Secret); None accepts any caller
    webhook_secret: str | None = None

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def apns_team(self) -> str:
        return self.apns_team_id or self.apple_team_id


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def get_public_base_url() -> str:
    """Get the public base URL used as the pass webServiceURL."""
    return settings.base_url.rstrip("/")
