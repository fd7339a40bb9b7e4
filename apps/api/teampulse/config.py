from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://teampulse:teampulse@db:5432/teampulse"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-18+board-sync"
  build_sha: str = "dev"
  api_docs_enabled: bool = True

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,testserver,api,web"

  log_level: str = "INFO"
  log_json: bool = False

  # Per-subscriber buffer; a slow websocket client loses events beyond this.
  event_queue_size: int = 256
  ws_ping_interval_seconds: int = 25

  max_attachment_bytes: int = 50 * 1024 * 1024

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]

  def is_test_db(self) -> bool:
    db_name = self.database_url.rsplit("/", 1)[-1]
    return "test" in db_name


settings = Settings()
