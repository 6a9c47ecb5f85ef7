from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Accession Archiver"
    log_level: str = "INFO"

    # Browsertrix crawl service
    browsertrix_url: str = ""     # API base, e.g. https://app.browsertrix.com/api
    browsertrix_username: str = ""
    browsertrix_password: str = ""
    browsertrix_org_id: str = ""
    browsertrix_timeout: float = 60.0

    # Saga polling budget
    poll_interval_seconds: float = 60.0
    poll_max_attempts: int = 30

    # Supabase (Storage bucket for artifacts + PostgREST catalog)
    supabase_url: str = ""
    supabase_key: str = ""        # service_role key
    supabase_bucket: str = "archives"
    supabase_timeout: float = 60.0
    signed_url_ttl_seconds: int = 3600

    # Postmark
    postmark_api_base: str = "https://api.postmarkapp.com"
    postmark_api_key: str = ""
    archive_sender_email: str = ""
    notification_timeout: float = 10.0

    # Public base URL of the frontend, used in notification links
    public_base_url: str = ""

    @property
    def browsertrix_configured(self) -> bool:
        return bool(self.browsertrix_url and self.browsertrix_username and self.browsertrix_org_id)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


settings = Settings()
