from __future__ import annotations

import sys
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from meshalert.bootstrap import AppWiring, build_app_system
from meshalert.domain.errors import AlreadyInFlight, ConfigurationError, StoreUnavailable, UnknownNode
from meshalert.domain.models import Contact, ContactRole


def _contact_from_body(item: Dict[str, Any]) -> Contact:
    return Contact(
        id=str(item["id"]),
        name=str(item["name"]),
        role=ContactRole(str(item.get("role", "farmer"))),
        phone=str(item["phone"]),
        consent=True,
    )


def create_app(wiring: AppWiring) -> Flask:
    """
    Build the HTTP surface over an already wired system.

    Routes
    ------
    POST /alerts              trigger an alert at a sensor node
    GET  /api/events/recent   merged event view, newest first
    POST /send-sms            dispatch one message to the given contacts
    GET  /api/topology        nodes, edges and relay paths
    GET  /health              liveness
    """
    app = Flask(__name__)
    app.config["WIRING"] = wiring

    @app.post("/alerts")
    def trigger_alert():
        data = request.get_json(silent=True) or {}
        node_id = data.get("node_id")
        if not node_id:
            return jsonify({"error": "node_id is required"}), 400

        try:
            run = wiring.engine.trigger(str(node_id))
        except UnknownNode as e:
            return jsonify({"error": str(e), "node_id": e.node_id}), 404
        except AlreadyInFlight as e:
            return jsonify({"error": str(e), "alert_id": e.alert_id}), 409

        outcome = run.wait(0) if run.done() else None
        if outcome is not None and outcome.failed:
            print(f"[APP][PROPAGATION] {run.alert_id} failed at trigger: {outcome.error}")
            return jsonify({"alert_id": run.alert_id, "status": "failed", "error": str(outcome.error)}), 503
        status = "propagating" if outcome is None else outcome.status.value.lower()
        return jsonify({"alert_id": run.alert_id, "node_id": node_id, "status": status}), 202

    @app.get("/api/events/recent")
    def recent_events():
        limit = request.args.get("limit", default=wiring.log.view_limit, type=int)
        limit = max(0, min(limit, wiring.log.view_limit))

        view = wiring.runtime.view
        view.merge_snapshot(wiring.log.recent(limit))
        events = view.snapshot()[:limit]
        return jsonify({"count": len(events), "events": [e.to_record() for e in events]}), 200

    @app.post("/send-sms")
    def send_sms():
        data = request.get_json(silent=True) or {}
        try:
            contacts: List[Contact] = [_contact_from_body(c) for c in data.get("contacts", [])]
            message = str(data["message"])
            alert_id = str(data["alertId"])
        except (KeyError, TypeError, ValueError) as e:
            return jsonify({"success": False, "error": f"invalid request: {e}"}), 400

        try:
            result = wiring.dispatcher.dispatch(contacts, message, alert_id)
        except (ConfigurationError, StoreUnavailable) as e:
            print(f"[APP][SMS] send-sms failed: {e}")
            return jsonify({"success": False, "error": str(e)}), 500

        return jsonify(result.to_dict()), 200

    @app.get("/api/topology")
    def topology():
        topo = wiring.config.topology
        return jsonify(
            {
                "nodes": [
                    {"id": n.id, "kind": n.kind.value, "x": n.position[0], "y": n.position[1]}
                    for n in topo.nodes()
                ],
                "edges": sorted(list(e.as_pair()) for e in topo.edges()),
                "relay_paths": {s.id: _safe_path(wiring, s.id) for s in topo.sensors()},
            }
        ), 200

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "in_flight": wiring.engine.in_flight}), 200

    return app


def _safe_path(wiring: AppWiring, sensor_id: str) -> Optional[List[str]]:
    try:
        return wiring.config.topology.relay_path(sensor_id)
    except UnknownNode:
        return None


def main(argv: Optional[List[str]] = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    config_path = None
    if "--config" in argv:
        i = argv.index("--config")
        if i + 1 < len(argv):
            config_path = argv[i + 1]

    wiring = build_app_system(config_path=config_path)
    wiring.runtime.start()
    app = create_app(wiring)
    try:
        # IMPORTANT for EXE: do NOT use debug=True in production
        app.run(host=wiring.config.server.host, port=wiring.config.server.port, debug=False)
    finally:
        wiring.runtime.stop()


if __name__ == "__main__":
    main()
