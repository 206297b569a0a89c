#
# Description:
# Content fingerprints for every entity we store. Two rows describe the same
# thing if and only if the ordered fields they were hashed from are identical,
# which is what lets us re-import an export as often as we like and collapse
# the repeats afterwards.
#

import hashlib


def encode_part(part):
    """
    Encodes one field as b"<byte length>:<utf-8 bytes>". None counts as "".

    The length prefix makes every field self-delimiting, whatever characters
    the field itself contains.
    """
    data = (part or "").encode("utf-8")
    return str(len(data)).encode("ascii") + b":" + data


def compute_hash(parts):
    """
    Returns the SHA-256 hex digest of the given ordered fields.

    Fields are length-prefixed (see encode_part), so ("a", "") and ("a",)
    hash differently, as do ("ab", "c") and ("a", "bc") or ("a|", "b") and
    ("a", "|b").

    Args:
        parts (list): Ordered field values (strings or None).

    Returns:
        str: 64 lowercase hex characters.
    """
    hasher = hashlib.sha256()
    for part in parts:
        hasher.update(encode_part(part))
    return hasher.hexdigest()
