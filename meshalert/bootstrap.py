from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from meshalert.core.config.contact_registry import ContactRegistry
from meshalert.core.config.yaml_config import AppConfig, load_app_config
from meshalert.core.event_log import EventLog
from meshalert.core.state.event_store import EventStore, InMemoryEventStore
from meshalert.core.state.ndjson_store import NdjsonEventStore
from meshalert.domain.events import MeshEvent
from meshalert.notification.base import NotificationChannel
from meshalert.notification.console_sms import ConsoleSmsChannel
from meshalert.notification.twilio_sms import TwilioConfig, TwilioSmsChannel
from meshalert.runtime.app_runtime import AppRuntime
from meshalert.runtime.change_feed import ChangeFeed
from meshalert.services.dispatcher import NotificationDispatcher
from meshalert.services.propagation import AlertPropagationEngine


@dataclass(frozen=True)
class AppWiring:
    """Everything the CLI and HTTP layers need to run the system."""
    config: AppConfig
    log: EventLog
    contacts: ContactRegistry
    dispatcher: NotificationDispatcher
    engine: AlertPropagationEngine
    runtime: AppRuntime


def build_event_log(cfg: AppConfig) -> Tuple[EventLog, Optional[NdjsonEventStore]]:
    """
    Build the event log over the configured store.

    Returns
    -------
    tuple
        The log, and the file-backed store when one must be tailed.
    """
    feed = ChangeFeed()
    store: EventStore
    tail: Optional[NdjsonEventStore] = None

    if cfg.event_log.backend == "memory":
        store = InMemoryEventStore(feed=feed)
    else:
        tail = NdjsonEventStore(cfg.event_log.path, feed=feed)
        store = tail

    return EventLog(store=store, feed=feed, view_limit=cfg.event_log.view_limit), tail


def build_channel(cfg: AppConfig) -> NotificationChannel:
    if cfg.sms.provider == "console":
        return ConsoleSmsChannel(fail_numbers=cfg.sms.fail_numbers)

    return TwilioSmsChannel(
        TwilioConfig(
            account_sid=cfg.sms.account_sid,
            auth_token=cfg.sms.auth_token,
            from_number=cfg.sms.from_number,
            base_url=cfg.sms.base_url,
            timeout_s=cfg.sms.timeout_s,
            verify_tls=cfg.sms.verify_tls,
        )
    )


def build_app_system(
    config_path: Optional[str] = None,
    cfg: Optional[AppConfig] = None,
    on_view_change: Optional[Callable[[List[MeshEvent]], None]] = None,
) -> AppWiring:
    cfg = cfg or load_app_config(config_path)

    # --- EVENT LOG ---
    log, tail_store = build_event_log(cfg)

    # --- CONTACTS ---
    contacts = ContactRegistry()
    contacts.load(cfg.contacts)

    # --- NOTIFICATIONS ---
    dispatcher = NotificationDispatcher(channel=build_channel(cfg), log=log)

    # --- ENGINE ---
    engine = AlertPropagationEngine(
        topology=cfg.topology,
        log=log,
        contacts=contacts,
        dispatcher=dispatcher,
        hop_delay_s=cfg.propagation.hop_delay_s,
    )

    # --- RUNTIME ---
    runtime = AppRuntime(
        log=log,
        tail_store=tail_store,
        refresh_interval_s=cfg.event_log.refresh_interval_s,
        tail_interval_s=cfg.event_log.tail_interval_s,
        on_view_change=on_view_change,
    )

    return AppWiring(
        config=cfg,
        log=log,
        contacts=contacts,
        dispatcher=dispatcher,
        engine=engine,
        runtime=runtime,
    )
