import pytest

from lead_importer.reference import (
    ReferenceIntegrityError,
    decode_reference,
    encode_reference,
    resolve_reference,
)

SECRET = "test-secret"


def test_encode_then_decode_recovers_the_id():
    reference = encode_reference(1234, SECRET)

    assert len(reference) > 16
    assert reference[16:] == "MTIzNA"
    assert decode_reference(reference, SECRET) == 1234


def test_every_small_id_round_trips_strictly():
    for contact_id in range(1, 2001):
        reference = encode_reference(contact_id, SECRET)
        assert decode_reference(reference, SECRET, strict=True) == contact_id
        assert resolve_reference(reference, SECRET) == contact_id


@pytest.mark.parametrize("contact_id", [2**31 - 1, 2**31, 2**63 - 1, 10**15, 10**30])
def test_large_ids_round_trip(contact_id):
    reference = encode_reference(contact_id, SECRET)

    assert decode_reference(reference, SECRET, strict=True) == contact_id


def test_references_depend_on_the_secret():
    assert encode_reference(7, SECRET)[:16] != encode_reference(7, "other")[:16]


def test_signature_mismatch_falls_back_unless_strict(caplog):
    reference = encode_reference(99, "rotated-secret")

    with caplog.at_level("WARNING"):
        assert decode_reference(reference, SECRET) == 99
    assert "mismatch" in caplog.text

    with pytest.raises(ReferenceIntegrityError):
        decode_reference(reference, SECRET, strict=True)


@pytest.mark.parametrize(
    "reference",
    ["", "short", "0123456789abcdef", "0123456789abcdef!!!", "0123456789abcdefYWJj", "0123456789abcdefMA"],
)
def test_malformed_references_decode_to_none(reference):
    assert decode_reference(reference, SECRET) is None


def test_encode_rejects_non_positive_ids():
    with pytest.raises(ValueError):
        encode_reference(0, SECRET)


def test_resolve_reference_accepts_tokens_and_plain_ids():
    assert resolve_reference(encode_reference(5, SECRET), SECRET) == 5
    assert resolve_reference("42", SECRET) == 42
    assert resolve_reference(42, SECRET) == 42
    assert resolve_reference("abc", SECRET) is None
    assert resolve_reference(-1, SECRET) is None
