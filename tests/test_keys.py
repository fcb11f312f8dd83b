import pytest

from pharos_exporter.errors import ConfigError, InvalidAddress
from pharos_exporter.keys import ValidatorIdentity, normalize_address, normalize_bls_key


class TestNormalizeBlsKey:

    def test_case_and_prefix_insensitive(self):
        raw = "aabb" * 24
        assert normalize_bls_key("0X" + raw.upper()) == normalize_bls_key(raw)
        assert normalize_bls_key("0x" + raw.upper()) == raw

    def test_idempotent(self):
        once = normalize_bls_key("  0xAABBCC  ")
        assert normalize_bls_key(once) == once == "aabbcc"

    def test_long_even_blob_keeps_trailing_96(self):
        key = "12" * 48
        blob = "0x" + "ff" * 4 + key.upper()
        assert normalize_bls_key(blob) == key

    def test_long_odd_length_left_alone(self):
        odd = "f" + "12" * 48
        assert normalize_bls_key(odd) == odd


class TestNormalizeAddress:

    def test_lowercases(self):
        addr = "0x" + "AbCdEf0123" * 4
        assert normalize_address(addr) == addr.lower()

    @pytest.mark.parametrize("bad", [
        "1f" * 20,                  # missing prefix
        "0x" + "1f" * 19,           # too short
        "0x" + "1f" * 21,           # too long
        "0x" + "zz" * 20,           # not hex
    ])
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidAddress):
            normalize_address(bad)

    def test_invalid_address_is_config_error(self):
        assert issubclass(InvalidAddress, ConfigError)


def test_identity_without_address():
    ident = ValidatorIdentity.from_config("0xAB", "")
    assert ident.bls_key == "ab"
    assert ident.address is None


def test_identity_rejects_bad_address_at_construction():
    with pytest.raises(InvalidAddress):
        ValidatorIdentity.from_config("ab", "0x1234")
