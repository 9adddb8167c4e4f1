from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml
from dotenv import load_dotenv

from meshalert.core.topology import Topology, default_topology
from meshalert.domain.models import Contact, ContactRole, Edge, Node, NodeKind

SMS_PROVIDERS = ("twilio", "console")
EVENT_LOG_BACKENDS = ("ndjson", "memory")


@dataclass(frozen=True)
class PropagationConfig:
    """Alert propagation timing."""
    hop_delay_s: float = 0.8


@dataclass(frozen=True)
class EventLogConfig:
    """Event store location and view settings."""
    backend: str = "ndjson"
    path: Path = Path("mesh_events.ndjson")
    view_limit: int = 50
    refresh_interval_s: float = 2.0
    tail_interval_s: float = 0.5


@dataclass(frozen=True)
class SmsConfig:
    """
    Notification channel settings.

    Credentials are never read from YAML; they come from the environment
    (``TWILIO_ACCOUNT_SID``, ``TWILIO_AUTH_TOKEN``, ``TWILIO_PHONE_NUMBER``),
    optionally via a ``.env`` file next to the config file.
    """
    provider: str = "twilio"
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    base_url: str = "https://api.twilio.com"
    timeout_s: float = 10.0
    verify_tls: bool = True
    fail_numbers: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ServerConfig:
    """HTTP surface bind address."""
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass(frozen=True)
class AppConfig:
    """
    Mesh alert configuration as read from config.yaml.

    This is the single source of truth for runtime-tunable values: inter-hop
    delay, relay topology, notification channel, event store location and the
    initial contact list.
    """
    propagation: PropagationConfig
    topology: Topology
    event_log: EventLogConfig
    sms: SmsConfig
    contacts: List[Contact] = field(default_factory=list)
    server: ServerConfig = field(default_factory=ServerConfig)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("config.yaml must contain a YAML mapping at the root")
    return data


def _resolve_default_config_path() -> Path:
    """
    Find config.yaml when no explicit path is given.

    ``APP_CONFIG`` wins, then a config.yaml beside the interpreter or frozen
    executable, then the working directory.
    """
    import sys

    env = os.getenv("APP_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    exe_dir = Path(sys.executable).resolve().parent
    candidate = exe_dir / "config.yaml"
    if candidate.exists():
        return candidate

    return Path("config.yaml").resolve()


def _parse_topology(raw: Dict[str, Any]) -> Topology:
    if not raw:
        return default_topology()

    nodes: List[Node] = []
    for item in raw.get("nodes", []):
        nodes.append(
            Node(
                id=str(item["id"]),
                kind=NodeKind(str(item["kind"])),
                position=(float(item.get("x", 0.0)), float(item.get("y", 0.0))),
            )
        )

    edges: List[Edge] = []
    for pair in raw.get("edges", []):
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"topology.edges entries must be [a, b] pairs, got {pair!r}")
        edges.append(Edge.between(str(pair[0]), str(pair[1])))

    paths = {
        str(origin): [str(h) for h in hops]
        for origin, hops in (raw.get("relay_paths") or {}).items()
    }

    gw = raw.get("gateway")
    return Topology(
        node_list=nodes,
        edge_set=edges,
        static_paths=paths,
        default_gateway=None if gw is None else str(gw),
    )


def _parse_contacts(items: List[Dict[str, Any]]) -> List[Contact]:
    contacts: List[Contact] = []
    for item in items:
        contacts.append(
            Contact(
                id=str(item["id"]),
                name=str(item["name"]),
                role=ContactRole(str(item.get("role", "farmer"))),
                phone=str(item["phone"]),
                consent=bool(item.get("consent", True)),
            )
        )
    return contacts


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Read config.yaml (and a sibling .env) into an :class:`AppConfig`.

    Parameters
    ----------
    path
        Location of config.yaml. Resolved via APP_CONFIG and the usual
        locations when omitted.

    Returns
    -------
    AppConfig
        Typed configuration with Twilio secrets taken from the environment.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If required fields are missing or invalid.
    """
    cfg_path = Path(path).expanduser().resolve() if path else _resolve_default_config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    # Secrets stay editable next to the config file.
    load_dotenv(cfg_path.parent / ".env")

    raw = _read_yaml(cfg_path)

    try:
        return _build(raw, cfg_path.parent)
    except KeyError as e:
        raise ValueError(f"config.yaml missing required field {e.args[0]!r}") from e


def _build(raw: Dict[str, Any], base_dir: Path) -> AppConfig:
    # ---- propagation ----
    p = raw.get("propagation") or {}
    propagation = PropagationConfig(hop_delay_s=float(p.get("hop_delay_s", 0.8)))
    if propagation.hop_delay_s < 0:
        raise ValueError("propagation.hop_delay_s must be >= 0")

    # ---- topology ----
    topology = _parse_topology(raw.get("topology") or {})

    # ---- event log ----
    e = raw.get("event_log") or {}
    backend = str(e.get("backend", "ndjson"))
    if backend not in EVENT_LOG_BACKENDS:
        raise ValueError(f"event_log.backend must be one of {EVENT_LOG_BACKENDS}, got {backend!r}")
    log_path = Path(str(e.get("path", "mesh_events.ndjson"))).expanduser()
    if not log_path.is_absolute():
        log_path = base_dir / log_path
    event_log = EventLogConfig(
        backend=backend,
        path=log_path,
        view_limit=int(e.get("view_limit", 50)),
        refresh_interval_s=float(e.get("refresh_interval_s", 2.0)),
        tail_interval_s=float(e.get("tail_interval_s", 0.5)),
    )

    # ---- sms ----
    s = raw.get("sms") or {}
    provider = str(s.get("provider", "twilio"))
    if provider not in SMS_PROVIDERS:
        raise ValueError(f"sms.provider must be one of {SMS_PROVIDERS}, got {provider!r}")
    sms = SmsConfig(
        provider=provider,
        account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        from_number=os.getenv("TWILIO_PHONE_NUMBER") or s.get("from_number"),
        base_url=str(s.get("base_url", "https://api.twilio.com")),
        timeout_s=float(s.get("timeout_s", 10.0)),
        verify_tls=bool(s.get("verify_tls", True)),
        fail_numbers=frozenset(str(n) for n in s.get("fail_numbers", []) or []),
    )

    # ---- server ----
    srv = raw.get("server") or {}
    server = ServerConfig(host=str(srv.get("host", "0.0.0.0")), port=int(srv.get("port", 8000)))

    return AppConfig(
        propagation=propagation,
        topology=topology,
        event_log=event_log,
        sms=sms,
        contacts=_parse_contacts(raw.get("contacts") or []),
        server=server,
    )
