"""Settings resolution: defaults, YAML file, environment."""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # noqa: E402

from core.config import Settings, load_settings
from core.errors import ConfigError


def test_defaults():
    settings = load_settings()
    assert settings.network == "calibration"
    assert settings.address_prefix == "t"
    assert settings.verified_registry == "t06"
    assert settings.sp_chunk_size == 8
    assert settings.step_delay == 2.0
    assert not settings.uses_allocator_contract


def test_yaml_then_env(tmp_path, monkeypatch):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text("network: mainnet\nsp_chunk_size: 4\nmultisig_address: f01000\n")
    monkeypatch.setenv("DATACAP_SP_CHUNK_SIZE", "6")
    monkeypatch.setenv("DATACAP_ALLOCATOR_CONTRACT", "0x" + "aa" * 20)
    settings = load_settings(cfg)
    assert settings.network == "mainnet"
    assert settings.verified_registry == "f06"
    assert settings.multisig_address == "f01000"
    assert settings.sp_chunk_size == 6
    assert settings.uses_allocator_contract


def test_config_path_from_env(tmp_path, monkeypatch):
    cfg = tmp_path / "settings.yaml"
    cfg.write_text("step_delay: 0.5\n")
    monkeypatch.setenv("DATACAP_CONFIG", str(cfg))
    assert load_settings().step_delay == 0.5


@pytest.mark.parametrize(
    "content",
    ["unknown_key: 1\n", "network: moonnet\n", "sp_chunk_size: 0\n", "step_delay: -1\n", "- a\n- b\n"],
)
def test_invalid_files_rejected(tmp_path, content):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text(content)
    with pytest.raises(ConfigError):
        load_settings(cfg)


def test_bad_env_value(monkeypatch):
    monkeypatch.setenv("DATACAP_SP_CHUNK_SIZE", "eight")
    with pytest.raises(ConfigError):
        load_settings()


def test_missing_file():
    with pytest.raises(ConfigError):
        load_settings("nope.yaml")


def test_validate_direct():
    with pytest.raises(ConfigError):
        Settings(accounts_page=0).validate()
