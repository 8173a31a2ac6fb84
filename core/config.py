from pydantic_settings import BaseSettings
from pydantic import Field

from core.gateway.http import HttpGateway
from core.migration.local_state import LocalStateFile
from core.roadmap.models import Identity


class ClientSettings(BaseSettings):
    gateway_url: str = Field(default="http://127.0.0.1:8090", validation_alias="ROADMAP_GATEWAY_URL")
    gateway_timeout_ms: int = Field(default=5000, validation_alias="ROADMAP_GATEWAY_TIMEOUT_MS")
    local_state_path: str = Field(default=".roadmap/local_state.json", validation_alias="ROADMAP_LOCAL_STATE_PATH")

    class Config:
        env_file = ".env"
        extra = "ignore"


client_settings = ClientSettings()


def create_gateway(identity: Identity | None = None, settings: ClientSettings | None = None) -> HttpGateway:
    cfg = settings or client_settings
    return HttpGateway(cfg.gateway_url, identity, timeout_ms=cfg.gateway_timeout_ms)


def open_local_state(settings: ClientSettings | None = None) -> LocalStateFile:
    cfg = settings or client_settings
    return LocalStateFile(cfg.local_state_path)
