from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    db_path: str = "sqlite:///roadmap.db"
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8090
    share_base_url: str = Field(default="http://localhost:3000", validation_alias="ROADMAP_SHARE_BASE_URL")

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
