from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Iterator

from meshalert.domain.events import EventType, MeshEvent, as_utc, metadata_from_dict


def record_to_event(obj: Dict[str, Any]) -> MeshEvent:
    """
    Decode a wire record into a :class:`~meshalert.domain.events.MeshEvent`.

    Parameters
    ----------
    obj
        JSON-decoded dictionary with keys ``id``, ``event_type``, ``node_id``,
        ``message``, ``metadata`` and ``created_at``.

    Returns
    -------
    MeshEvent
        Decoded event with typed metadata.

    Raises
    ------
    KeyError
        If ``id``, ``event_type`` or ``created_at`` is missing.
    ValueError
        If ``event_type`` is unknown or metadata lacks a required field.
    """
    event_type = EventType(obj["event_type"])
    node_id = obj.get("node_id")
    return MeshEvent(
        id=str(obj["id"]),
        event_type=event_type,
        node_id=None if node_id is None else str(node_id),
        message=str(obj.get("message") or ""),
        metadata=metadata_from_dict(event_type, obj.get("metadata")),
        created_at=as_utc(datetime.fromisoformat(str(obj["created_at"]))),
    )


def iter_json_objects(text: str) -> Iterator[Dict[str, Any]]:
    """
    Yield every JSON object on an NDJSON line.

    Two writers racing on the same file can leave records glued together on
    one line, e.g. ``{"id": "a", ...}{"id": "b", ...}``; each record is
    yielded in order. Non-object JSON values are skipped.

    Parameters
    ----------
    text
        One line read from the event file.

    Yields
    ------
    dict
        Decoded records.
    """
    s = text.strip()
    if not s:
        return

    dec = json.JSONDecoder()
    i = 0
    n = len(s)

    while i < n:
        while i < n and s[i].isspace():
            i += 1
        if i >= n:
            break

        obj, end = dec.raw_decode(s, i)
        if isinstance(obj, dict):
            yield obj
        i = end


def encode_event(ev: MeshEvent) -> str:
    """
    Encode an event as one NDJSON line (including the trailing newline).
    """
    return json.dumps(ev.to_record(), ensure_ascii=False, separators=(",", ":")) + "\n"


def decode_record(obj: Dict[str, Any]) -> MeshEvent:
    """
    Like :func:`record_to_event`, but every malformed record is a ValueError.
    """
    try:
        return record_to_event(obj)
    except KeyError as e:
        raise ValueError(f"Event record missing field {e.args[0]!r}") from e
    except TypeError as e:
        raise ValueError(f"Malformed event record: {e}") from e


def decode_events(line: str) -> Iterator[MeshEvent]:
    """
    Decode every event record on an NDJSON line.

    Records glued onto one line by racing writers are all returned, in order.

    Raises
    ------
    ValueError
        If the line holds no JSON object, or at the first invalid record.
        Records before it have already been yielded.
    """
    found = False
    for obj in iter_json_objects(line):
        found = True
        yield decode_record(obj)
    if not found:
        raise ValueError("No JSON object found in line")
