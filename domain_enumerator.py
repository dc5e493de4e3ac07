import logging
import re
import unicodedata
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable
from typing import Sequence

from solders.pubkey import Pubkey

from account_codec import NAME_RECORD_OWNER_OFFSET
from account_codec import NAME_RECORD_PARENT_OFFSET
from account_codec import TLD_HOUSE_DISCRIMINATOR
from account_codec import NftMetadata
from account_codec import decode_nft_metadata
from account_codec import decode_tld_house
from account_codec import name_record_header_size
from batching import chunked
from batching import map_limit
from exceptions import DecodeError
from exceptions import InvalidSeedError
from name_seeds import normalize_tld
from resolver_logic import NameResolver
from rpc_client import Memcmp

_logger = logging.getLogger("ans.enumerator")

_DIGITS = re.compile(r"(\d+)")


@dataclass(frozen=True)
class NameAccountAndDomain:
    name_account: Pubkey
    domain: str


@dataclass(frozen=True)
class TldEntry:
    tld: str
    parent_account: Pubkey
    tld_house: Pubkey


def natural_sort_key(domain: str):
    """Case and accent insensitive key where digit runs compare as numbers, so `a2` < `a10`."""
    text = unicodedata.normalize("NFKD", domain)
    text = "".join(c for c in text if not unicodedata.combining(c)).casefold()
    parts = _DIGITS.split(text)
    return [int(p) if i % 2 else p for i, p in enumerate(parts)], domain


def sort_domains(entries: Iterable[NameAccountAndDomain]) -> list[NameAccountAndDomain]:
    """Deduplicates by name account and sorts by domain."""
    unique: dict[Pubkey, NameAccountAndDomain] = {}
    for entry in entries:
        unique.setdefault(entry.name_account, entry)
    return sorted(unique.values(), key=lambda e: natural_sort_key(e.domain))


class DomainEnumerator:
    def __init__(self, resolver: NameResolver):
        self.resolver = resolver
        self.rpc = resolver.rpc
        self.config = resolver.config
        self.seeds = resolver.seeds

    # ---------------- scans ----------------
    async def find_owned_name_accounts(self, owner: Pubkey, parent: Pubkey = None) -> list[tuple[Pubkey, bytes]]:
        filters = [Memcmp(NAME_RECORD_OWNER_OFFSET, bytes(owner))]
        if parent is not None:
            filters.append(Memcmp(NAME_RECORD_PARENT_OFFSET, bytes(parent)))
        header_size = name_record_header_size(self.config.name_record_layout)
        return await self.rpc.get_program_accounts(self.config.ans_program_id, filters, (0, header_size))

    async def get_all_tlds(self) -> list[TldEntry]:
        accounts = await self.rpc.get_program_accounts(
            self.config.tld_house_program_id,
            [Memcmp(0, TLD_HOUSE_DISCRIMINATOR)],
        )
        tlds = []
        for address, data in accounts:
            try:
                house = decode_tld_house(data, self.config.tld_house_layout)
            except DecodeError as e:
                _logger.debug("Skipping TLD house %s: %s", address, e)
                continue
            if not house.tld:
                continue
            tlds.append(TldEntry(normalize_tld(house.tld), house.parent_account, address))
        return tlds

    async def _valid_owned(self, accounts: Sequence[tuple[Pubkey, bytes]]):
        """Decodable, unexpired records as `(name_account, parent_name)` in scan order."""
        owned = []
        parents: dict = {}
        for address, data in accounts:
            record = self.resolver.decode(data, address)
            if record is None:
                continue
            await self.resolver.evaluate(record, parents)
            if not record.is_valid:
                _logger.debug("Skipping expired name account %s", address)
                continue
            owned.append((address, record.parent_name))
        return owned

    # ---------------- reverse lookups ----------------
    async def _lookup_batch(self, batch: Sequence[Pubkey], tld_house: Pubkey, tld: str) -> list[NameAccountAndDomain]:
        labels = await self.resolver.reverse_lookup_batched(batch, tld_house)
        domains = []
        for name_account, label in zip(batch, labels):
            if label is None:
                _logger.debug("No reverse lookup for %s", name_account)
                continue
            domains.append(NameAccountAndDomain(name_account, label + tld))
        return domains

    async def reverse_lookup_domains(self, name_accounts: Sequence[Pubkey], tld_house: Pubkey, tld: str,
                                     concurrency: int = None) -> list[NameAccountAndDomain]:
        batches = chunked(list(name_accounts), self.config.batch_size)
        results = await map_limit(
            batches,
            concurrency or self.config.concurrency,
            lambda batch: self._lookup_batch(batch, tld_house, tld),
        )
        return [d for batch in results for d in batch]

    # ---------------- NFT wrapped domains ----------------
    async def get_owner_nft_mints(self, owner: Pubkey) -> list[Pubkey]:
        tokens = await self.rpc.get_token_accounts_by_owner(owner)
        return [t.mint for t in tokens if t.decimals == 0 and t.amount == 1]

    async def get_nft_metadata(self, mints: Sequence[Pubkey]) -> list[NftMetadata]:
        async def fetch(batch):
            keys = [self.seeds.find_metadata_address(m) for m in batch]
            found = []
            for key, data in zip(keys, await self.rpc.get_multiple_accounts(keys)):
                if data is None:
                    continue
                try:
                    found.append(decode_nft_metadata(data))
                except DecodeError as e:
                    _logger.debug("Skipping metadata %s: %s", key, e)
            return found

        batches = chunked(list(mints), self.config.batch_size)
        results = await map_limit(batches, self.config.concurrency, fetch)
        return [m for batch in results for m in batch]

    def nft_domains(self, metadata: Iterable[NftMetadata], tld_house: Pubkey, tld: str) -> list[NameAccountAndDomain]:
        """Domains whose NFT was verified-created by the name house of `tld_house`."""
        name_house, _ = self.seeds.find_name_house(tld_house)
        domains = []
        for meta in metadata:
            if not meta.first_creator_verified or meta.first_creator != name_house or not meta.name:
                continue
            domain = meta.name + tld
            try:
                name_account = self.seeds.get_domain_key(domain)
            except InvalidSeedError as e:
                _logger.debug("Skipping NFT domain %s: %s", domain, e)
                continue
            domains.append(NameAccountAndDomain(name_account, domain))
        return domains

    async def get_nft_domains(self, owner: Pubkey, tld: str) -> list[NameAccountAndDomain]:
        tld = normalize_tld(tld)
        tld_house, _ = self.seeds.find_tld_house(tld)
        metadata = await self.get_nft_metadata(await self.get_owner_nft_mints(owner))
        return self.nft_domains(metadata, tld_house, tld)

    # ---------------- enumeration ----------------
    async def get_all_user_domains(self, owner: Pubkey) -> list[Pubkey]:
        return [address for address, _ in await self.find_owned_name_accounts(owner)]

    async def get_all_user_domains_from_tld(self, owner: Pubkey, tld: str) -> list[Pubkey]:
        parent = self.seeds.get_tld_account_key(tld)
        return [address for address, _ in await self.find_owned_name_accounts(owner, parent)]

    async def enumerate_domains(self, owner: Pubkey, tld: str = None,
                                include_nft_domains: bool = True) -> list[NameAccountAndDomain]:
        if tld is not None:
            return await self.enumerate_tld_domains(owner, tld, include_nft_domains)
        return await self.enumerate_all_domains(owner, include_nft_domains)

    async def enumerate_tld_domains(self, owner: Pubkey, tld: str,
                                    include_nft_domains: bool = True) -> list[NameAccountAndDomain]:
        tld = normalize_tld(tld)
        tld_house, _ = self.seeds.find_tld_house(tld)
        parent = self.seeds.get_tld_account_key(tld)

        owned = await self._valid_owned(await self.find_owned_name_accounts(owner, parent))
        domains = await self.reverse_lookup_domains([a for a, _ in owned], tld_house, tld)
        if include_nft_domains:
            domains.extend(await self.get_nft_domains(owner, tld))
        _logger.info("Found %s %s domains for %s", len(domains), tld, owner)
        return sort_domains(domains)

    async def enumerate_all_domains(self, owner: Pubkey, include_nft_domains: bool = True) -> list[NameAccountAndDomain]:
        tlds = await self.get_all_tlds()
        owned = await self._valid_owned(await self.find_owned_name_accounts(owner))
        by_parent = defaultdict(list)
        for address, parent in owned:
            by_parent[parent].append(address)

        metadata: list[NftMetadata] = []
        if include_nft_domains:
            metadata = await self.get_nft_metadata(await self.get_owner_nft_mints(owner))

        async def per_tld(entry: TldEntry) -> list[NameAccountAndDomain]:
            domains = []
            # Batches of one TLD run back to back, TLDs run side by side
            for batch in chunked(by_parent.get(entry.parent_account, []), self.config.batch_size):
                domains.extend(await self._lookup_batch(batch, entry.tld_house, entry.tld))
            if metadata:
                domains.extend(self.nft_domains(metadata, entry.tld_house, entry.tld))
            return domains

        results = await map_limit(tlds, self.config.all_tlds_concurrency, per_tld)
        domains = [d for tld_domains in results for d in tld_domains]
        _logger.info("Found %s domains in %s TLDs for %s", len(domains), len(tlds), owner)
        return sort_domains(domains)
