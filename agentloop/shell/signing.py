"""Hyperliquid L1 action signing (EIP-712 phantom-agent scheme).

The action is msgpack-encoded, suffixed with the nonce and vault flag and
hashed; the hash is signed as the ``connectionId`` of a phantom ``Agent``
struct under the fixed ``Exchange`` domain.
"""

from __future__ import annotations

from typing import Any

import msgpack
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_hex

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address[2:] if address.startswith("0x") else address)


def action_hash(action: dict, vault_address: str | None, nonce: int, expires_after: int | None = None) -> bytes:
    data = msgpack.packb(action)
    data += nonce.to_bytes(8, "big")
    if vault_address is None:
        data += b"\x00"
    else:
        data += b"\x01" + _address_bytes(vault_address)
    if expires_after is not None:
        data += b"\x00" + expires_after.to_bytes(8, "big")
    return keccak(data)


def l1_payload(connection_id: bytes, is_mainnet: bool) -> dict:
    return {
        "domain": {
            "chainId": 1337,
            "name": "Exchange",
            "verifyingContract": ZERO_ADDRESS,
            "version": "1",
        },
        "types": {
            "Agent": [
                {"name": "source", "type": "string"},
                {"name": "connectionId", "type": "bytes32"},
            ],
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
        },
        "primaryType": "Agent",
        "message": {"source": "a" if is_mainnet else "b", "connectionId": connection_id},
    }


def normalize_private_key(key: str) -> str:
    return key if key.startswith("0x") else f"0x{key}"


def sign_l1_action(
    private_key: str,
    action: dict,
    nonce: int,
    *,
    is_mainnet: bool,
    vault_address: str | None = None,
    expires_after: int | None = None,
) -> dict[str, Any]:
    wallet = Account.from_key(normalize_private_key(private_key))
    digest = action_hash(action, vault_address, nonce, expires_after)
    signable = encode_typed_data(full_message=l1_payload(digest, is_mainnet))
    signed = wallet.sign_message(signable)
    return {"r": to_hex(signed.r), "s": to_hex(signed.s), "v": signed.v}


def signer_address(private_key: str) -> str:
    return Account.from_key(normalize_private_key(private_key)).address
