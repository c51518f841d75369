from typing import Any

import orjson


def encode_frame(frame: dict) -> str:
    # orjson emits compact UTF-8; websockets wants str for text frames
    return orjson.dumps(frame).decode("utf-8")


def encode_json(obj: Any) -> bytes:
    return orjson.dumps(obj)


def decode_frame(raw: str | bytes) -> Any:
    return orjson.loads(raw)


JSONDecodeError = orjson.JSONDecodeError
