"""Public resolution contract of the ANS client.

`create_name_service` picks a backend once, at construction. Only SVM
chains are implemented; every method accepts an address either as a
`Pubkey` or as a base58 string.
"""

import logging
import time
from abc import ABC
from abc import abstractmethod
from typing import Sequence

from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from account_codec import MainDomainRecord
from account_codec import NameRecord
from domain_enumerator import DomainEnumerator
from domain_enumerator import NameAccountAndDomain
from exceptions import UnsupportedChainError
from name_seeds import NameSeeds
from name_seeds import Record
from name_seeds import normalize_tld
from name_seeds import parse_address
from name_seeds import split_domain_tld
from registry_config import RegistryConfig
from resolver_logic import MainDomainCheck
from resolver_logic import NameResolver
from rpc_client import RegistryRpc

_logger = logging.getLogger("ans")

SVM_CHAINS = ("solana", "eclipse", "yona", "termina")


class NameServiceBackend(ABC):
    @abstractmethod
    async def resolve_owner(self, domain_label: str, tld: str) -> Pubkey | None: ...

    @abstractmethod
    async def resolve_record(self, domain_label: str, tld: str) -> NameRecord | None: ...

    @abstractmethod
    async def resolve_tld_from_parent_account(self, parent_account) -> str | None: ...

    @abstractmethod
    async def reverse_resolve(self, name_account, parent_owner) -> str | None: ...

    @abstractmethod
    async def resolve_main_domain(self, owner) -> MainDomainRecord | None: ...

    @abstractmethod
    async def enumerate_domains(self, owner, tld: str = None,
                                include_nft_domains: bool = True) -> list[NameAccountAndDomain]: ...

    async def resolve_owner_from_domain_tld(self, domain_tld: str) -> Pubkey | None:
        """`miester.poor` -> owner"""
        label, tld = _split(domain_tld)
        return await self.resolve_owner(label, tld)

    async def resolve_record_from_domain_tld(self, domain_tld: str) -> NameRecord | None:
        label, tld = _split(domain_tld)
        return await self.resolve_record(label, tld)

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def _split(domain_tld: str):
    tld, domain, subdomain = split_domain_tld(domain_tld)
    label = f"{subdomain}.{domain}" if subdomain else domain
    return label, tld


class SvmNameService(NameServiceBackend):
    def __init__(self, rpc: RegistryRpc, config: RegistryConfig = None, clock=time.time):
        self.config = config or RegistryConfig()
        self.rpc = rpc
        self.seeds = NameSeeds(self.config)
        self.resolver = NameResolver(rpc, self.config, self.seeds, clock)
        self.enumerator = DomainEnumerator(self.resolver)

    async def close(self) -> None:
        await self.rpc.close()

    def name_account_for(self, domain_label: str, tld: str) -> Pubkey:
        return self.seeds.get_domain_key(domain_label + normalize_tld(tld))

    async def resolve_owner(self, domain_label: str, tld: str) -> Pubkey | None:
        name_account = self.name_account_for(domain_label, tld)
        return await self.resolver.resolve_owner(name_account, self.resolver.tld_house_for(tld))

    async def resolve_record(self, domain_label: str, tld: str) -> NameRecord | None:
        """Record even when expired; `effective_owner` tells whether anyone owns it now."""
        name_account = self.name_account_for(domain_label, tld)
        record = await self.resolver.fetch_name_record(name_account)
        if record is not None and record.is_valid:
            await self.resolver.unwrap_owner(name_account, record, self.resolver.tld_house_for(tld))
        return record

    async def resolve_tld_from_parent_account(self, parent_account) -> str | None:
        return await self.resolver.get_tld_from_parent_account(parse_address(parent_account))

    async def reverse_resolve(self, name_account, parent_owner) -> str | None:
        return await self.resolver.reverse_lookup(parse_address(name_account), parse_address(parent_owner))

    async def resolve_main_domain(self, owner) -> MainDomainRecord | None:
        return await self.resolver.get_main_domain(parse_address(owner))

    async def get_main_domain_checked(self, owner) -> MainDomainCheck:
        return await self.resolver.get_main_domain_checked(parse_address(owner))

    async def get_multiple_main_domains_checked(self, owners: Sequence) -> list[MainDomainCheck]:
        return await self.resolver.get_multiple_main_domains_checked([parse_address(o) for o in owners])

    async def resolve_records(self, domain_tld: str, records: Sequence[Record]) -> dict[Record, str | None]:
        return await self.resolver.resolve_records(domain_tld, records)

    async def get_domain_mint_account(self, domain_tld: str) -> Pubkey | None:
        label, tld = _split(domain_tld)
        return await self.resolver.get_domain_mint_account(
            self.name_account_for(label, tld), self.resolver.tld_house_for(tld)
        )

    async def enumerate_domains(self, owner, tld: str = None,
                                include_nft_domains: bool = True) -> list[NameAccountAndDomain]:
        return await self.enumerator.enumerate_domains(parse_address(owner), tld, include_nft_domains)

    async def get_all_user_domains(self, owner) -> list[Pubkey]:
        return await self.enumerator.get_all_user_domains(parse_address(owner))

    async def get_all_user_domains_from_tld(self, owner, tld: str) -> list[Pubkey]:
        return await self.enumerator.get_all_user_domains_from_tld(parse_address(owner), tld)


def create_name_service(rpc=None, chain: str = None, config: RegistryConfig = None) -> NameServiceBackend:
    """Backend for `chain`; SVM chains share one implementation."""
    config = config or RegistryConfig()
    name = (chain or "solana").lower()
    if name not in SVM_CHAINS:
        raise UnsupportedChainError(name)

    if rpc is None:
        rpc = RegistryRpc.from_config(config)
    elif isinstance(rpc, AsyncClient):
        rpc = RegistryRpc(rpc, config.commitment)
    _logger.debug("Using SVM name service backend for %s", name)
    return SvmNameService(rpc, config)
