from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, List, Sequence, Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from yield_dashboard.errors import ChainReadError
from yield_dashboard.http import HttpClient

logger = logging.getLogger(__name__)

Arg = Union[int, str]

UINT = ("uint256",)


@lru_cache(maxsize=256)
def selector(signature: str) -> str:
    """4-byte function selector as 8 hex chars, e.g. 'totalSupply()' -> '18160ddd'."""
    return bytes(Web3.keccak(text=signature)[:4]).hex()


@lru_cache(maxsize=256)
def arg_types(signature: str) -> Tuple[str, ...]:
    inner = signature[signature.index("(") + 1:signature.rindex(")")]
    return tuple(t.strip() for t in inner.split(",") if t.strip())


def encode_call(signature: str, *args: Arg) -> str:
    types = arg_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} takes {len(types)} arguments, got {len(args)}")
    # eth_abi wants checksummed addresses; raises ValueError on malformed ones
    values = [Web3.to_checksum_address(a) if t == "address" else a for t, a in zip(types, args)]
    return "0x" + selector(signature) + encode(list(types), values).hex()


def decode_result(result: str, returns: Sequence[str]) -> Tuple[Any, ...]:
    return decode(list(returns), bytes.fromhex(result.removeprefix("0x")))


class ChainReader:
    """Read-only view calls against an Avalanche C-Chain JSON-RPC endpoint."""

    def __init__(self, http: HttpClient, rpc_url: str):
        self.http = http
        self.rpc_url = rpc_url

    async def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        resp = await self.http.post(self.rpc_url, json=payload)
        data = resp.json()
        if "error" in data:
            raise RuntimeError(f"RPC error: {data['error']}")
        return data.get("result")

    async def call(self, contract: str, signature: str, *args: Arg, returns: Sequence[str] = UINT) -> List[Any]:
        """eth_call decoded against the declared output types."""
        method = signature.split("(", 1)[0]
        try:
            result = await self._rpc("eth_call", [{"to": contract, "data": encode_call(signature, *args)}, "latest"])
        except Exception as e:
            raise ChainReadError(contract, method, str(e)) from e
        if not isinstance(result, str) or len(result) <= 2:
            # "0x" means no code at the address or the call reverted silently
            raise ChainReadError(contract, method, "empty result")
        try:
            return list(decode_result(result, returns))
        except DecodingError as e:
            raise ChainReadError(contract, method, f"cannot decode as ({','.join(returns)}): {e}") from e

    async def call_uint(self, contract: str, signature: str, *args: Arg) -> int:
        return (await self.call(contract, signature, *args, returns=UINT))[0]
