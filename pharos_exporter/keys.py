"""BLS key and account address normalization."""

from dataclasses import dataclass

from pharos_exporter.errors import InvalidAddress

BLS_KEY_HEX_LEN = 96
ADDRESS_HEX_LEN = 40

_HEX_DIGITS = frozenset("0123456789abcdef")


def trim_0x(s: str) -> str:
    if s.startswith("0x") or s.startswith("0X"):
        return s[2:]
    return s


def normalize_bls_key(s: str) -> str:
    """Canonical form of a BLS public key: unprefixed lowercase hex.

    Keys embedded in a longer encoded blob are cut down to their trailing
    96 hex characters.
    """
    s = trim_0x(s.strip()).lower()
    if len(s) > BLS_KEY_HEX_LEN and len(s) % 2 == 0:
        s = s[-BLS_KEY_HEX_LEN:]
    return s


def normalize_address(s: str) -> str:
    """Lowercased ``0x`` + 40 hex address, or InvalidAddress."""
    addr = s.strip().lower()
    if not addr.startswith("0x"):
        raise InvalidAddress(f"invalid address {s!r}: expected 0x + {ADDRESS_HEX_LEN} hex chars")
    body = addr[2:]
    if len(body) != ADDRESS_HEX_LEN or not set(body) <= _HEX_DIGITS:
        raise InvalidAddress(f"invalid address {s!r}: expected 0x + {ADDRESS_HEX_LEN} hex chars")
    return addr


@dataclass(frozen=True)
class ValidatorIdentity:
    bls_key: str
    address: str | None = None

    @classmethod
    def from_config(cls, bls_key: str, address: str | None = None) -> "ValidatorIdentity":
        addr = None
        if address and address.strip():
            addr = normalize_address(address)
        return cls(bls_key=normalize_bls_key(bls_key or ""), address=addr)
