import hashlib
from typing import Any
import orjson


def build_key(*parts: str) -> str:
    joined = ":".join(str(p) for p in parts if p is not None and p != "")
    if len(joined) > 200:
        return hashlib.sha256(joined.encode()).hexdigest()
    return joined

def serialize(value: Any) -> bytes:
    return orjson.dumps(value, option=orjson.OPT_NON_STR_KEYS)

def deserialize(b: bytes) -> Any:
    return orjson.loads(b)
