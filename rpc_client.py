import logging
from dataclasses import dataclass
from typing import Sequence

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.models import DataSliceOpts
from solana.rpc.models import MemcmpOpts
from solana.rpc.models import TokenAccountOpts
from solders.pubkey import Pubkey

from registry_config import MULTIPLE_ACCOUNT_INFO_MAX
from registry_config import SPL_TOKEN_PROGRAM_ID
from registry_config import RegistryConfig

_logger = logging.getLogger("ans.rpc")


@dataclass(frozen=True)
class Memcmp:
    offset: int
    data: bytes


@dataclass(frozen=True)
class TokenHolder:
    address: Pubkey
    amount: int
    decimals: int


@dataclass(frozen=True)
class OwnedToken:
    mint: Pubkey
    amount: int
    decimals: int


class RegistryRpc:
    """Thin async adapter over the solana-py client.

    Returns plain bytes and tuples so the rest of the client never touches
    RPC response types.
    """

    def __init__(self, client: AsyncClient, commitment: str = "confirmed"):
        self.client = client
        self.commitment = Commitment(commitment)

    @classmethod
    def from_config(cls, config: RegistryConfig) -> "RegistryRpc":
        client = AsyncClient(config.rpc_url, commitment=Commitment(config.commitment))
        return cls(client, config.commitment)

    async def __aenter__(self) -> "RegistryRpc":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.close()

    async def get_account_info(self, address: Pubkey) -> bytes | None:
        res = await self.client.get_account_info(address, commitment=self.commitment)
        if res.value is None:
            return None
        return bytes(res.value.data)

    async def get_multiple_accounts(self, addresses: Sequence[Pubkey]) -> list[bytes | None]:
        """Same length and order as `addresses`."""
        addresses = list(addresses)
        if not addresses:
            return []
        if len(addresses) > MULTIPLE_ACCOUNT_INFO_MAX:
            raise ValueError(f"{len(addresses)} accounts requested, RPC allows {MULTIPLE_ACCOUNT_INFO_MAX}")
        _logger.debug("Fetching %s accounts", len(addresses))
        res = await self.client.get_multiple_accounts(addresses, commitment=self.commitment)
        return [bytes(a.data) if a is not None else None for a in res.value]

    async def get_program_accounts(
        self,
        program_id: Pubkey,
        filters: Sequence[Memcmp] = (),
        data_slice: tuple[int, int] | None = None,
    ) -> list[tuple[Pubkey, bytes]]:
        opts = [MemcmpOpts(offset=f.offset, bytes=base58_str(f.data)) for f in filters]
        slice_opts = DataSliceOpts(offset=data_slice[0], length=data_slice[1]) if data_slice else None
        _logger.debug("Scanning %s with %s filters", program_id, len(opts))
        res = await self.client.get_program_accounts(
            program_id,
            commitment=self.commitment,
            encoding="base64",
            data_slice=slice_opts,
            filters=opts or None,
        )
        return [(a.pubkey, bytes(a.account.data)) for a in res.value]

    async def get_token_largest_holders(self, mint: Pubkey) -> list[TokenHolder]:
        """Token accounts of `mint`, largest balance first."""
        res = await self.client.get_token_largest_accounts(mint, commitment=self.commitment)
        return [
            TokenHolder(address=a.address, amount=int(a.amount.amount), decimals=a.amount.decimals)
            for a in res.value
        ]

    async def get_token_accounts_by_owner(self, owner: Pubkey) -> list[OwnedToken]:
        res = await self.client.get_token_accounts_by_owner_json_parsed(
            owner,
            TokenAccountOpts(program_id=SPL_TOKEN_PROGRAM_ID),
            commitment=self.commitment,
        )
        tokens = []
        for keyed in res.value:
            try:
                info = keyed.account.data.parsed["info"]
                token_amount = info["tokenAmount"]
                tokens.append(
                    OwnedToken(
                        mint=Pubkey.from_string(info["mint"]),
                        amount=int(token_amount["amount"]),
                        decimals=int(token_amount["decimals"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                _logger.debug("Skipping unparsable token account %s", keyed.pubkey)
                continue
        return tokens


def base58_str(data: bytes) -> str:
    return base58.b58encode(data).decode()
