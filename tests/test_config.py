import json
import os

from nodegate.config import DEFAULTS, ConfigManager


def test_defaults_without_config_file(tmp_path):
    config = ConfigManager(str(tmp_path), environ={}).load()
    assert config["web"]["port"] == 3000
    assert config["auth"]["cache_ttl_seconds"] == 60
    assert config["storage"]["backend"] == "sqlite"
    assert config["debug"] is False


def test_yaml_overrides_are_merged(tmp_path):
    (tmp_path / "config.yaml").write_text("auth:\n  cache_ttl_seconds: 30\n", encoding="utf-8")
    config = ConfigManager(str(tmp_path), environ={}).load()
    assert config["auth"]["cache_ttl_seconds"] == 30
    assert config["auth"]["jwt_expiration_hours"] == 24
    # DEFAULTS must not be mutated by the merge
    assert DEFAULTS["auth"]["cache_ttl_seconds"] == 60


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text("web: [unclosed", encoding="utf-8")
    config = ConfigManager(str(tmp_path), environ={}).load()
    assert "_config_error" in config
    assert config["web"]["port"] == 3000


def test_debug_from_environment(tmp_path):
    config = ConfigManager(str(tmp_path), environ={"NODEGATE_DEBUG": "true"}).load()
    assert config["debug"] is True


def test_storage_path_is_resolved_against_project(tmp_path):
    manager = ConfigManager(str(tmp_path), environ={})
    assert manager.storage_path() == os.path.join(str(tmp_path), "data/nodegate.db")


def test_allowed_wallets_from_env_file(tmp_path):
    (tmp_path / ".env").write_text("ALLOWED_WALLETS=addrA,addrB\n", encoding="utf-8")
    assert ConfigManager(str(tmp_path), environ={}).get_allowed_wallets() == "addrA,addrB"
    manager = ConfigManager(str(tmp_path), environ={"ALLOWED_WALLETS": "addrC"})
    assert manager.get_allowed_wallets() == "addrC"


def test_jwt_secret_generated_once(tmp_path):
    manager = ConfigManager(str(tmp_path), environ={})
    secret = manager.get_jwt_secret()
    assert len(secret) == 64
    assert manager.get_jwt_secret() == secret

    with open(tmp_path / "data" / "auth.json", encoding="utf-8") as f:
        assert json.load(f)["jwt_secret"] == secret


def test_jwt_secret_from_environment(tmp_path):
    manager = ConfigManager(str(tmp_path), environ={"JWT_SECRET": "from-env"})
    assert manager.get_jwt_secret() == "from-env"
    assert not (tmp_path / "data").exists()
