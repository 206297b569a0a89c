import hashlib

import pytest

from content_hash import compute_hash, encode_part


def test_hash_is_sha256_of_length_prefixed_parts():
    expected = hashlib.sha256(b"1:a1:b").hexdigest()
    assert compute_hash(["a", "b"]) == expected


def test_encode_part():
    assert encode_part("abc") == b"3:abc"
    assert encode_part("") == b"0:"
    assert encode_part(None) == b"0:"


def test_hash_is_64_lowercase_hex_chars():
    value = compute_hash(["HKQuantityTypeIdentifierHeartRate", "Apple Watch"])
    assert len(value) == 64
    assert value == value.lower()
    int(value, 16)


def test_no_parts_hashes_empty_input():
    assert compute_hash([]) == hashlib.sha256(b"").hexdigest()


def test_same_parts_same_hash():
    parts = ["HKQuantityTypeIdentifierStepCount", "iPhone", "2024-01-01 09:00:00", "1500"]
    assert compute_hash(parts) == compute_hash(list(parts))


def test_order_matters():
    assert compute_hash(["a", "b"]) != compute_hash(["b", "a"])


def test_part_boundaries_matter():
    assert compute_hash(["ab", "c"]) != compute_hash(["a", "bc"])
    assert compute_hash(["", ""]) != compute_hash([""])


@pytest.mark.parametrize("left, right", [
    (["a|", "b"], ["a", "|b"]),
    (["Tom|Jerry", ""], ["Tom", "Jerry|"]),
    (["1:a", "b"], ["1", "a1:b"]),
    (["a\x00", "b"], ["a", "\x00b"]),
])
def test_fields_containing_delimiters_do_not_collide(left, right):
    assert compute_hash(left) != compute_hash(right)


def test_none_is_treated_as_empty_string():
    assert compute_hash(["x", None]) == compute_hash(["x", ""])


def test_non_ascii_parts_are_utf8_encoded():
    # "µV" is two characters but three bytes
    expected = hashlib.sha256("3:µV".encode("utf-8")).hexdigest()
    assert compute_hash(["µV"]) == expected
