from __future__ import annotations

import json
from pathlib import Path
from typing import Mapping


def canonicalize_json(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            str(key): canonicalize_json(item_value)
            for key, item_value in sorted(value.items(), key=lambda item: str(item[0]))
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize_json(item) for item in value]
    return value


def dump_json_text(payload: Mapping[str, object]) -> str:
    return json.dumps(canonicalize_json(payload), indent=2) + "\n"


def write_json_object(path: Path, payload: Mapping[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_json_text(payload), encoding="utf-8")

