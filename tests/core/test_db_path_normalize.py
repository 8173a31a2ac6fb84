from core.storage.schema import _normalize_db_path, create_session_factory
from core.storage.schema import Profile


def test_normalize_db_path_keeps_valid_sqlite_uri() -> None:
    value = "sqlite:///roadmap.db"
    assert _normalize_db_path(value) == value


def test_normalize_db_path_supports_absolute_path() -> None:
    value = "/tmp/roadmap.db"
    assert _normalize_db_path(value) == "sqlite:////tmp/roadmap.db"


def test_normalize_db_path_fixes_malformed_sqlite_prefix() -> None:
    normalized = _normalize_db_path("sqlite:/roadmap.db")
    assert normalized.startswith("sqlite:///")
    assert normalized.endswith("/roadmap.db")


def test_normalize_db_path_defaults_when_blank() -> None:
    assert _normalize_db_path("").endswith("/roadmap.db")


def test_create_session_factory_creates_tables(tmp_path) -> None:
    session_factory = create_session_factory(f"sqlite:///{tmp_path / 'schema.db'}")
    session = session_factory()
    try:
        session.add(Profile(id="u1", email="a@example.com"))
        session.commit()
        assert session.query(Profile).count() == 1
    finally:
        session.close()
