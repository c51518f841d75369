import pydantic
import pytest

from chatrelay.config import ADMIN_PASSWORD_ENV, Settings, load_settings


def test_defaults():
    settings = Settings()
    assert settings.listen_addr == ("0.0.0.0", 3000)
    assert settings.presence_mode == "roster"
    assert settings.room_assignment == "self-select"
    assert settings.limits.max_users == 100
    assert settings.limits.max_messages_per_room == 30
    assert settings.limits.max_message_length == 300
    assert settings.sweeper.interval_ms == 30 * 60 * 1000
    assert settings.sweeper.retention_ms == 60 * 60 * 1000
    assert [p.name for p in settings.synthetic.participants] == ["Sarah", "Mike", "Emma", "Alex", "Lisa"]


def test_load_yaml_with_overrides(tmp_path, monkeypatch):
    monkeypatch.delenv(ADMIN_PASSWORD_ENV, raising=False)
    path = tmp_path / "server.yaml"
    path.write_text(
        "listen: 127.0.0.1:4000\n"
        "presence_mode: anonymous\n"
        "limits:\n"
        "  max_users: 5\n"
        "admin:\n"
        "  username: root\n"
        "  password: s3cret\n",
        encoding="utf-8",
    )

    settings = load_settings(path, overrides={"listen": "127.0.0.1:5000", "room_assignment": None})

    assert settings.listen_addr == ("127.0.0.1", 5000)
    assert settings.presence_mode == "anonymous"
    assert settings.room_assignment == "self-select"
    assert settings.limits.max_users == 5
    assert settings.limits.replay_size == 30
    assert settings.admin.username == "root"
    assert settings.admin.password == "s3cret"


def test_admin_password_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(ADMIN_PASSWORD_ENV, "from-env")
    path = tmp_path / "server.yaml"
    path.write_text("presence_mode: roster\n", encoding="utf-8")
    assert load_settings(path).admin.password == "from-env"


def test_missing_explicit_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "nope.yaml")


def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "server.yaml"
    path.write_text("presence_mode: loud\n", encoding="utf-8")
    with pytest.raises(pydantic.ValidationError):
        load_settings(path)

    with pytest.raises(pydantic.ValidationError):
        Settings.model_validate({"limits": {"max_users": 0}})
