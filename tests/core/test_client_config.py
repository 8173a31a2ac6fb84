from core.config import ClientSettings, create_gateway, open_local_state
from core.roadmap.models import Identity


def test_client_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("ROADMAP_GATEWAY_URL", "http://gateway.test:9000/")
    monkeypatch.setenv("ROADMAP_GATEWAY_TIMEOUT_MS", "2500")
    monkeypatch.setenv("ROADMAP_LOCAL_STATE_PATH", str(tmp_path / "state.json"))

    settings = ClientSettings()
    gateway = create_gateway(Identity(user_id="u1"), settings)
    state = open_local_state(settings)

    assert settings.gateway_timeout_ms == 2500
    assert gateway.name == "http"
    assert gateway.identity.user_id == "u1"
    assert gateway._base_url == "http://gateway.test:9000"
    assert gateway._timeout_ms == 2500
    assert state.path == tmp_path / "state.json"
