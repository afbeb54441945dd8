"""
Raw signed transaction decoding.
"""

from __future__ import annotations

from typing import Any, List, Tuple

import rlp
from eth_account import Account
from eth_utils import big_endian_to_int, encode_hex, keccak, to_bytes

from bundlecast.core.errors import DecodeError
from .models import SignedBundleEntry

# EIP-2718 envelopes whose payload starts with [chainId, nonce, ...]
TYPED_TRANSACTION_TYPES = {0x01, 0x02, 0x03, 0x04}


def _to_raw_bytes(signed_transaction: str) -> bytes:
    if not isinstance(signed_transaction, str) or not signed_transaction.startswith("0x"):
        raise DecodeError("Signed transaction must be a 0x-prefixed hex string")
    try:
        return to_bytes(hexstr=signed_transaction)
    except (ValueError, TypeError) as exc:
        raise DecodeError(f"Signed transaction is not valid hex: {exc}") from exc


def _decode_envelope(raw: bytes) -> Tuple[int, bytes]:
    """Nonce and the canonical encoding the transaction hash is taken over."""
    if not raw:
        raise DecodeError("Signed transaction is empty")

    first = raw[0]
    canonical = raw
    if first >= 0xC0:
        fields: List[Any] = rlp.decode(raw)
        nonce_field = fields[0]
    elif first in TYPED_TRANSACTION_TYPES:
        fields = rlp.decode(raw[1:])
        if fields and isinstance(fields[0], list):
            # blob transaction in network form: [tx_payload, blobs, commitments, proofs]
            fields = fields[0]
            canonical = bytes([first]) + rlp.encode(fields)
        nonce_field = fields[1]
    else:
        raise DecodeError(f"Unsupported transaction type 0x{first:02x}")

    if not isinstance(nonce_field, bytes):
        raise DecodeError("Transaction nonce field is not a scalar")
    return big_endian_to_int(nonce_field), canonical


def decode_signed_transaction(signed_transaction: str) -> SignedBundleEntry:
    """Recover hash, sender and nonce from a raw signed transaction.

    Raises:
        DecodeError: if the input is not a decodable signed transaction
    """
    raw = _to_raw_bytes(signed_transaction)
    try:
        nonce, canonical = _decode_envelope(raw)
        account = Account.recover_transaction(canonical)
    except DecodeError:
        raise
    except Exception as exc:
        raise DecodeError(f"Could not decode signed transaction: {exc}") from exc

    return SignedBundleEntry(
        signed_transaction=signed_transaction,
        hash=encode_hex(keccak(canonical)),
        account=account,
        nonce=nonce,
    )
