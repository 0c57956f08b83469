from __future__ import annotations

import pytest

from app.config import _env_bool


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), (" YES ", True), ("false", False), ("0", False)])
def test_env_bool(monkeypatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("REMINDERS_ENABLED", raw)
    assert _env_bool("REMINDERS_ENABLED", "false") is expected


def test_env_bool_default(monkeypatch) -> None:
    monkeypatch.delenv("SOME_UNSET_FLAG", raising=False)
    assert _env_bool("SOME_UNSET_FLAG", "true") is True


def test_memory_backend_without_credentials() -> None:
    from app.config import Settings
    from app.db.repository import InMemoryAppointmentRepository, build_repositories

    settings = Settings(persistence_backend="memory", default_duration_minutes=30)
    _, appointments = build_repositories(settings)
    assert isinstance(appointments, InMemoryAppointmentRepository)
    assert appointments.default_duration == 30


def test_supabase_backend_requires_credentials() -> None:
    from app.config import Settings
    from app.db.repository import build_repositories

    with pytest.raises(ValueError):
        build_repositories(Settings(persistence_backend="supabase", supabase_url=None, supabase_key=None))
