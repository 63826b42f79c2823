import re
import uuid

# Courier and user ids are signed 64-bit integers in the store.
MAX_NUMERIC_ID = 2**63 - 1

def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"

def is_valid_id(prefix: str, value: str) -> bool:
    return re.fullmatch(rf"{re.escape(prefix)}_[0-9a-f]{{32}}", value) is not None
