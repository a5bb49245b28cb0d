"""
Datatype resolution: datatype IRI -> prefixed name.
"""

import re

_PREFIXED = re.compile(r"^[A-Za-z][\w\-.]*:[\w\-.]+$")


def resolve_datatype(uri: str, prefix: str = "xsd") -> str:
    """
    Convert a datatype IRI into a prefixed name.

    The local name is whatever follows the last '#' when that '#' comes
    after the last '/', otherwise whatever follows the last '/'. The
    check is purely lexical; nothing verifies the datatype exists.

    Example:
        resolve_datatype("http://www.w3.org/2001/XMLSchema#float")  # xsd:float
        resolve_datatype("http://example.org/ns/float")             # xsd:float

    Already-prefixed names ("xsd:float") are returned unchanged.
    """
    if _PREFIXED.match(uri) and "//" not in uri:
        return uri

    local = uri
    hash_pos = uri.rfind("#")
    slash_pos = uri.rfind("/")
    if hash_pos > slash_pos:
        local = uri[hash_pos + 1:]
    elif slash_pos >= 0:
        local = uri[slash_pos + 1:]
    return f"{prefix}:{local}"
