from __future__ import annotations

import sys
from typing import List, Optional

from meshalert.bootstrap import build_app_system
from meshalert.domain.errors import MeshAlertError
from meshalert.domain.events import MeshEvent


def _arg(argv: List[str], flag: str) -> Optional[str]:
    if flag in argv:
        i = argv.index(flag)
        if i + 1 < len(argv):
            return argv[i + 1]
    return None


def _fmt(ev: MeshEvent) -> str:
    node = f" [{ev.node_id}]" if ev.node_id else ""
    return f"{ev.created_at.astimezone().strftime('%H:%M:%S.%f')[:-3]} {ev.event_type.value:<16}{node} {ev.message}"


def main(argv: Optional[List[str]] = None) -> int:
    """
    Trigger one alert from the command line and print the event stream.

    Notes
    -----
    - Loads configuration from `config.yaml` by default.
    - Usage:
        python -m meshalert.dev.run_app --node sensor-1 [--config path/to/config.yaml]
    - Without ``--node`` the recent event log is printed and nothing is triggered.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    wiring = build_app_system(config_path=_arg(argv, "--config"))
    node = _arg(argv, "--node")

    if node is None:
        for ev in reversed(wiring.log.recent()):
            print(_fmt(ev))
        return 0

    with wiring.log.subscribe() as sub:
        try:
            run = wiring.engine.trigger(node)
        except MeshAlertError as e:
            print(f"[APP] trigger rejected: {e}")
            return 2

        while True:
            ev = sub.get(timeout=0.2)
            if ev is not None:
                print(_fmt(ev))
            elif run.done():
                break

    outcome = run.wait()
    if outcome is None:
        print(f"[APP] alert {run.alert_id} finished without an outcome")
        return 1
    if outcome.failed:
        print(f"[APP] alert {outcome.alert_id} FAILED: {outcome.error}")
        return 1
    if outcome.no_recipients:
        print("[APP] No consenting contacts: add contacts to receive SMS alerts")
    print(
        f"[APP] alert {outcome.alert_id} completed: "
        f"total={outcome.dispatch.total} sent={outcome.dispatch.sent} failed={outcome.dispatch.failed}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
