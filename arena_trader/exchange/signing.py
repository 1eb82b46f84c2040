"""
Request signing for the Aster futures v3 API.

Every authenticated request is signed the same way:

1. merge the request parameters with recvWindow and a millisecond timestamp
2. stringify every value and drop nulls
3. dump the result as compact JSON with keys in ASCII order
4. ABI-encode (json, user, signer, nonce) as (string, address, address, uint256)
5. keccak256 the encoded bytes
6. personal_sign (EIP-191) the 32-byte hash with the signer key

The functions here are pure given (params, nonce, timestamp, credentials), so
the same inputs always produce the same signature.
"""
import json
import time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address, to_hex
from pydantic import BaseModel

from ..errors import AuthenticationFailed
from .wallet import WalletCredentials

DEFAULT_RECV_WINDOW = 50000

ABI_TYPES = ["string", "address", "address", "uint256"]


def generate_nonce() -> int:
    """Current time in microseconds."""
    return int(time.time() * 1_000_000)


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def _stringify(value: Any) -> str:
    if isinstance(value, Enum):
        return _stringify(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return format(Decimal(repr(value)), "f")
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (list, tuple)):
        items = [
            json.dumps(v, separators=(",", ":")) if isinstance(v, (dict, list, tuple)) else _stringify(v)
            for v in value
        ]
        return json.dumps(items, separators=(",", ":"))
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def canonicalize_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """Convert every value to its canonical string form, dropping None."""
    return {key: _stringify(value) for key, value in params.items() if value is not None}


def canonical_json(canonical: Mapping[str, str]) -> str:
    """Compact JSON with sorted keys, exactly as the exchange rebuilds it."""
    return json.dumps(dict(canonical), sort_keys=True, separators=(",", ":"))


def encode_payload(json_str: str, user: str, signer: str, nonce: int) -> bytes:
    try:
        return encode(
            ABI_TYPES,
            [json_str, to_checksum_address(user), to_checksum_address(signer), int(nonce)],
        )
    except (ValueError, TypeError) as e:
        raise AuthenticationFailed(f"Cannot encode signing payload: {e}") from e


def sign_digest(digest: bytes, private_key: str) -> str:
    """EIP-191 personal_sign over the raw 32 hash bytes."""
    message = encode_defunct(primitive=digest)
    try:
        signed = Account.sign_message(message, private_key=private_key)
    except (ValueError, TypeError) as e:
        raise AuthenticationFailed(f"Signer private key rejected: {e}") from e
    return to_hex(signed.signature)


class SignedRequest(BaseModel):
    """Canonical parameters plus the authentication fields."""
    params: Dict[str, str]
    json_payload: str
    nonce: int
    user: str
    signer: str
    signature: str

    def to_payload(self) -> Dict[str, str]:
        """Flat field set sent as query string or form body."""
        return {
            **self.params,
            "nonce": str(self.nonce),
            "user": self.user,
            "signer": self.signer,
            "signature": self.signature,
        }


def sign_params(
    params: Mapping[str, Any],
    credentials: Optional[WalletCredentials],
    nonce: int,
    timestamp_ms: int,
    recv_window: int = DEFAULT_RECV_WINDOW,
) -> SignedRequest:
    """
    Sign a parameter set for an authenticated endpoint.

    Raises:
        AuthenticationFailed: credentials are missing or unusable
    """
    if credentials is None:
        raise AuthenticationFailed("No wallet credentials supplied")
    credentials.validate()

    merged = {**params, "recvWindow": recv_window, "timestamp": timestamp_ms}
    canonical = canonicalize_params(merged)
    json_str = canonical_json(canonical)

    encoded = encode_payload(json_str, credentials.user, credentials.signer, nonce)
    digest = keccak(encoded)
    signature = sign_digest(digest, credentials.private_key)

    return SignedRequest(
        params=canonical,
        json_payload=json_str,
        nonce=nonce,
        user=credentials.user,
        signer=credentials.signer,
        signature=signature,
    )
