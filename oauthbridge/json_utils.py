"""
JSON helpers backed by orjson.

Used by the host side to decode the credential payload delivered by the
login page and to render stored users.
"""

import orjson

def dumps(obj, *, default=None, indent=None, sort_keys=False):
    option = 0

    if indent is not None:
        option |= orjson.OPT_INDENT_2

    if sort_keys:
        option |= orjson.OPT_SORT_KEYS

    return orjson.dumps(obj, default=default, option=option).decode('utf-8')

def loads(s):
    # Accept either str or bytes
    if isinstance(s, str):
        s = s.encode('utf-8')
    return orjson.loads(s)

def loadsObject(s):
    """
    Decode a JSON document that must be an object.

    Raises:
        ValueError: If the document is invalid or not an object.
    """
    obj = loads(s)
    if not isinstance(obj, dict):
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    return obj
