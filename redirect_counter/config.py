from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from pathlib import Path

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


    APP_NAME: str = "Subdomain Redirect Counter"
    LISTEN_PORT: int = 8000
    DEBUG_MODE: bool = False
    LOG_LEVEL: str = "INFO"
    ROOT_PATH: str = ""

    DATA_DIR: str = Field(default="data")
    SQLITE_PATH: str | None = None  # if None, will be data/app.db

    # Primary tenant serving URL (scheme + host, optionally a path)
    SITE_URL: str = "http://localhost:8000"
    PRIMARY_TENANT: str = "main"
    # Additional tenants: name -> site URL, e.g. TENANTS='{"shop": "https://shop.example.org"}'
    TENANTS: dict[str, str] = Field(default_factory=dict)

    # Domain redirects handled before tenant resolution (defaults to on for multi-tenant setups)
    EARLY_DOMAIN_REDIRECTS: bool | None = None

    # Read client IP from X-Forwarded-For when running behind a proxy
    TRUST_PROXY_HEADERS: bool = False

    ADMIN_TOKEN: str = ""

    # JSON file with published content for the primary tenant; if None, will be data/content.json
    CONTENT_FILE: str | None = None

    def data_path(self) -> Path:
        d = Path(self.DATA_DIR)
        d.mkdir(parents=True, exist_ok=True)
        return d

    def db_path(self) -> str:
        if self.SQLITE_PATH:
            return self.SQLITE_PATH
        return str(self.data_path() / "app.db")

    def tenant_db_path(self, name: str) -> str:
        if name == self.PRIMARY_TENANT:
            return self.db_path()
        d = self.data_path() / "tenants"
        d.mkdir(parents=True, exist_ok=True)
        return str(d / f"{name}.db")

    def content_path(self, name: str) -> str:
        if name == self.PRIMARY_TENANT:
            return self.CONTENT_FILE or str(self.data_path() / "content.json")
        return str(self.data_path() / "tenants" / f"{name}.content.json")

    def is_multi_tenant(self) -> bool:
        return bool(self.TENANTS)

    def early_redirects_enabled(self) -> bool:
        if self.EARLY_DOMAIN_REDIRECTS is None:
            return self.is_multi_tenant()
        return self.EARLY_DOMAIN_REDIRECTS

settings = Settings()
