"""
Unit tests for meshalert.core.config.yaml_config.load_app_config.

These tests validate:
- parsing of every config section into typed objects
- defaults when optional sections are omitted
- credentials are read from the environment (optionally via .env)
- validation errors for invalid values
"""

from __future__ import annotations

from pathlib import Path

import pytest

from meshalert.core.config.yaml_config import load_app_config
from meshalert.domain.models import ContactRole

TWILIO_VARS = ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER")

FULL_CONFIG = """
propagation:
  hop_delay_s: 0.25
topology:
  gateway: gw
  nodes:
    - {id: s1, kind: sensor, x: 1, y: 2}
    - {id: s2, kind: sensor}
    - {id: gw, kind: gateway}
  edges:
    - [s1, s2]
    - [s2, gw]
  relay_paths:
    s1: [s2]
event_log:
  backend: memory
  path: logs/events.ndjson
  view_limit: 20
sms:
  provider: console
  fail_numbers: ["+1999"]
server:
  port: 9100
contacts:
  - {id: c1, name: Ravi, role: farmer, phone: "+1555"}
  - {id: c2, name: Meena, role: officer, phone: "+1666", consent: false}
"""


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """
    Remove Twilio variables for the test and restore them afterwards, including
    any value a .env file loads during the test.
    """
    for name in TWILIO_VARS:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    monkeypatch.delenv("APP_CONFIG", raising=False)
    return monkeypatch


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "config.yaml"
    p.write_text(text, encoding="utf-8")
    return p


def test_full_config_is_parsed(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    cfg = load_app_config(str(_write(tmp_path, FULL_CONFIG)))

    assert cfg.propagation.hop_delay_s == 0.25
    assert [n.id for n in cfg.topology.nodes()] == ["s1", "s2", "gw"]
    assert cfg.topology.node("s1").position == (1.0, 2.0)  # type: ignore[union-attr]
    assert cfg.topology.relay_path("s1") == ["s2"]
    assert cfg.topology.relay_path("s2") == []

    assert cfg.event_log.backend == "memory"
    assert cfg.event_log.view_limit == 20
    assert cfg.event_log.path == tmp_path.resolve() / "logs" / "events.ndjson"

    assert cfg.sms.provider == "console"
    assert cfg.sms.fail_numbers == frozenset({"+1999"})
    assert cfg.server.port == 9100

    assert [c.id for c in cfg.contacts] == ["c1", "c2"]
    assert cfg.contacts[1].role == ContactRole.OFFICER
    assert cfg.contacts[1].consent is False


def test_defaults_when_sections_missing(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    cfg = load_app_config(str(_write(tmp_path, "{}\n")))

    assert cfg.propagation.hop_delay_s == 0.8
    assert cfg.topology.relay_path("sensor-1") == ["sensor-2", "sensor-3", "sensor-4"]
    assert cfg.event_log.backend == "ndjson"
    assert cfg.event_log.view_limit == 50
    assert cfg.sms.provider == "twilio"
    assert cfg.sms.account_sid is None
    assert cfg.contacts == []


def test_credentials_come_from_environment(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("TWILIO_ACCOUNT_SID", "AC1")
    clean_env.setenv("TWILIO_AUTH_TOKEN", "tok")
    clean_env.setenv("TWILIO_PHONE_NUMBER", "+1000")

    cfg = load_app_config(str(_write(tmp_path, "sms: {provider: twilio}\n")))

    assert (cfg.sms.account_sid, cfg.sms.auth_token, cfg.sms.from_number) == ("AC1", "tok", "+1000")


def test_dotenv_next_to_config_is_loaded(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("TWILIO_ACCOUNT_SID=ACfromdotenv\n", encoding="utf-8")

    cfg = load_app_config(str(_write(tmp_path, "{}\n")))

    assert cfg.sms.account_sid == "ACfromdotenv"


def test_app_config_env_var_is_used(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    p = _write(tmp_path, "propagation: {hop_delay_s: 0.1}\n")
    clean_env.setenv("APP_CONFIG", str(p))

    assert load_app_config().propagation.hop_delay_s == 0.1


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "nope.yaml"))


@pytest.mark.parametrize(
    "text, match",
    [
        ("sms: {provider: pigeon}\n", "sms.provider"),
        ("event_log: {backend: postgres}\n", "event_log.backend"),
        ("propagation: {hop_delay_s: -1}\n", "hop_delay_s"),
        ("contacts: [{id: c1, phone: '+1'}]\n", "name"),
        ("topology: {nodes: [{id: g, kind: gateway}], edges: [[g]]}\n", "pairs"),
    ],
)
def test_invalid_values_raise_value_error(
    tmp_path: Path, clean_env: pytest.MonkeyPatch, text: str, match: str
) -> None:
    with pytest.raises(ValueError, match=match):
        load_app_config(str(_write(tmp_path, text)))


def test_non_mapping_root_is_rejected(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    with pytest.raises(ValueError, match="mapping"):
        load_app_config(str(_write(tmp_path, "- just\n- a list\n")))
