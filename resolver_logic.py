import logging
import time
from dataclasses import dataclass
from typing import Callable
from typing import Sequence

from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.pubkey import Pubkey

from account_codec import MainDomainRecord
from account_codec import NameRecord
from account_codec import decode_label
from account_codec import decode_main_domain
from account_codec import decode_name_record
from account_codec import decode_nft_record
from account_codec import decode_tld_house
from account_codec import decode_token_account
from batching import chunked
from exceptions import DecodeError
from name_seeds import NameSeeds
from name_seeds import Record
from name_seeds import normalize_tld
from registry_config import RegistryConfig
from rpc_client import RegistryRpc

_logger = logging.getLogger("ans.resolver")

ZERO_KEY = Pubkey.default()
# domain -> tld root -> origin; anything deeper is a malformed chain
MAX_PARENT_DEPTH = 8


def is_record_valid(record: NameRecord, grace_period: int, now: int) -> bool:
    """`expires_at == 0` never expires, otherwise valid until the grace period runs out."""
    if record.expires_at == 0:
        return True
    return now <= record.expires_at + grace_period


@dataclass(frozen=True)
class MainDomainCheck:
    pubkey: Pubkey
    name_account: Pubkey | None
    main_domain: str | None


class NameResolver:
    def __init__(self, rpc: RegistryRpc, config: RegistryConfig = None, seeds: NameSeeds = None,
                 clock: Callable[[], float] = time.time):
        self.rpc = rpc
        self.config = config or RegistryConfig()
        self.seeds = seeds or NameSeeds(self.config)
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    # ---------------- name records ----------------
    def decode(self, data: bytes | None, address: Pubkey = None) -> NameRecord | None:
        if data is None:
            return None
        try:
            return decode_name_record(data, self.config.name_record_layout)
        except DecodeError as e:
            _logger.debug("Ignoring name account %s: %s", address, e)
            return None

    async def fetch_raw_name_record(self, address: Pubkey) -> NameRecord | None:
        """Decoded record without validity checks."""
        return self.decode(await self.rpc.get_account_info(address), address)

    async def fetch_name_record(self, address: Pubkey) -> NameRecord | None:
        record = await self.fetch_raw_name_record(address)
        if record is None:
            return None
        return await self.evaluate(record)

    async def fetch_name_records(self, addresses: Sequence[Pubkey]) -> list[NameRecord | None]:
        records: list[NameRecord | None] = []
        parents: dict[Pubkey, NameRecord | None] = {}
        for batch in chunked(list(addresses), self.config.batch_size):
            infos = await self.rpc.get_multiple_accounts(batch)
            for address, data in zip(batch, infos):
                record = self.decode(data, address)
                if record is not None:
                    record = await self.evaluate(record, parents)
                records.append(record)
        return records

    async def evaluate(self, record: NameRecord, parents: dict = None, depth: int = 0,
                       expiry_is_duration: bool = False) -> NameRecord:
        """Sets `is_valid` and `effective_owner` on `record` for the current time.

        With `expiry_is_duration` the record's `expires_at` is the grace period
        of its children, not a timestamp, so only its parent chain is checked.
        """
        parents = {} if parents is None else parents
        policy = self.config.grace_period_policy
        check_parent = self.config.require_valid_parent and record.parent_name != ZERO_KEY

        parent = None
        if (policy.needs_parent or check_parent) and record.parent_name != ZERO_KEY:
            parent = await self._get_parent(record.parent_name, parents)

        if expiry_is_duration:
            valid = True
        else:
            grace_period = policy.grace_period(parent.expires_at if parent else None)
            valid = is_record_valid(record, grace_period, self.now())

        if valid and check_parent:
            if parent is None or depth >= MAX_PARENT_DEPTH:
                valid = False
            else:
                if parent.is_valid is None:
                    await self.evaluate(parent, parents, depth + 1, policy.needs_parent)
                valid = bool(parent.is_valid)

        record.is_valid = valid
        record.effective_owner = record.owner if valid else None
        return record

    async def _get_parent(self, address: Pubkey, parents: dict) -> NameRecord | None:
        if address not in parents:
            parents[address] = await self.fetch_raw_name_record(address)
        return parents[address]

    # ---------------- ownership ----------------
    async def resolve_owner(self, name_account: Pubkey, tld_house: Pubkey = None) -> Pubkey | None:
        record = await self.fetch_name_record(name_account)
        if record is None or not record.is_valid:
            return None
        return await self.unwrap_owner(name_account, record, tld_house)

    async def unwrap_owner(self, name_account: Pubkey, record: NameRecord, tld_house: Pubkey = None) -> Pubkey | None:
        if not record.is_valid:
            return None
        if tld_house is None:
            return record.owner
        nft_record = self.nft_record_for(name_account, tld_house)
        if record.owner != nft_record:
            return record.owner
        owner = await self.get_mint_owner(nft_record)
        record.effective_owner = owner
        return owner

    def nft_record_for(self, name_account: Pubkey, tld_house: Pubkey) -> Pubkey:
        name_house, _ = self.seeds.find_name_house(tld_house)
        nft_record, _ = self.seeds.find_nft_record(name_account, name_house)
        return nft_record

    async def get_mint_owner(self, nft_record: Pubkey) -> Pubkey | None:
        """Holder of the single NFT wrapping a domain, None if there is no unique holder."""
        try:
            data = await self.rpc.get_account_info(nft_record)
            if data is None:
                return None
            nft = decode_nft_record(data)
            if not nft.is_active:
                _logger.debug("NFT record %s is not active (tag %s)", nft_record, nft.tag)
                return None

            holders = [h for h in await self.rpc.get_token_largest_holders(nft.nft_mint_account) if h.amount > 0]
            if len(holders) != 1:
                return None
            holder = holders[0]
            if holder.amount != 1 or holder.decimals != 0:
                return None

            token_data = await self.rpc.get_account_info(holder.address)
            if token_data is None:
                return None
            token = decode_token_account(token_data)
            if token.amount != 1 or token.mint != nft.nft_mint_account:
                return None
            return token.owner
        except (SolanaRpcException, RPCException) as e:
            _logger.warning("Failed to resolve NFT holder of %s: %s", nft_record, e)
            return None
        except DecodeError as e:
            _logger.debug("Failed to decode NFT ownership of %s: %s", nft_record, e)
            return None

    async def get_domain_mint_account(self, name_account: Pubkey, tld_house: Pubkey) -> Pubkey | None:
        record = await self.fetch_raw_name_record(name_account)
        if record is None:
            return None
        name_house, _ = self.seeds.find_name_house(tld_house)
        mint, _ = self.seeds.find_mint_address(name_account, name_house, record.expires_at)
        return mint

    # ---------------- reverse lookups ----------------
    def _reverse_label(self, data: bytes | None, address: Pubkey = None) -> str | None:
        record = self.decode(data, address)
        if record is None:
            return None
        try:
            return decode_label(record.data) or None
        except DecodeError as e:
            _logger.debug("Ignoring reverse lookup %s: %s", address, e)
            return None

    async def reverse_lookup(self, name_account: Pubkey, tld_house: Pubkey) -> str | None:
        key = self.seeds.find_reverse_lookup_account(name_account, tld_house)
        return self._reverse_label(await self.rpc.get_account_info(key), key)

    async def reverse_lookup_batched(self, name_accounts: Sequence[Pubkey], tld_house: Pubkey) -> list[str | None]:
        """Labels for `name_accounts`, position for position."""
        labels: list[str | None] = []
        for batch in chunked(list(name_accounts), self.config.batch_size):
            keys = [self.seeds.find_reverse_lookup_account(a, tld_house) for a in batch]
            infos = await self.rpc.get_multiple_accounts(keys)
            labels.extend(self._reverse_label(data, key) for key, data in zip(keys, infos))
        return labels

    async def get_tld_from_parent_account(self, parent_account: Pubkey) -> str | None:
        parent = await self.fetch_raw_name_record(parent_account)
        if parent is None:
            return None
        # TLD root records are owned by their TLD house
        data = await self.rpc.get_account_info(parent.owner)
        if data is None:
            return None
        try:
            return decode_tld_house(data, self.config.tld_house_layout).tld
        except DecodeError as e:
            _logger.debug("Ignoring TLD house %s: %s", parent.owner, e)
            return None

    # ---------------- main domains ----------------
    def _decode_main_domain(self, data: bytes | None, address: Pubkey = None) -> MainDomainRecord | None:
        if data is None:
            return None
        try:
            return decode_main_domain(data)
        except DecodeError as e:
            _logger.debug("Ignoring main domain %s: %s", address, e)
            return None

    async def get_main_domain(self, owner: Pubkey) -> MainDomainRecord | None:
        key, _ = self.seeds.find_main_domain(owner)
        return self._decode_main_domain(await self.rpc.get_account_info(key), key)

    async def get_main_domain_checked(self, owner: Pubkey) -> MainDomainCheck:
        """Main domain of `owner`, kept only while `owner` still holds an unexpired domain."""
        main_domain = await self.get_main_domain(owner)
        if main_domain is None:
            return MainDomainCheck(owner, None, None)
        record = await self.fetch_name_record(main_domain.name_account)
        return await self._check_main_domain(owner, main_domain, record)

    async def get_multiple_main_domains_checked(self, owners: Sequence[Pubkey]) -> list[MainDomainCheck]:
        owners = list(owners)
        main_domains: list[MainDomainRecord | None] = []
        for batch in chunked(owners, self.config.batch_size):
            keys = [self.seeds.find_main_domain(o)[0] for o in batch]
            infos = await self.rpc.get_multiple_accounts(keys)
            main_domains.extend(self._decode_main_domain(d, k) for k, d in zip(keys, infos))

        present = [m.name_account for m in main_domains if m is not None]
        records = iter(await self.fetch_name_records(present))

        results = []
        for owner, main_domain in zip(owners, main_domains):
            if main_domain is None:
                results.append(MainDomainCheck(owner, None, None))
                continue
            results.append(await self._check_main_domain(owner, main_domain, next(records)))
        return results

    async def _check_main_domain(self, owner: Pubkey, main_domain: MainDomainRecord,
                                 record: NameRecord | None) -> MainDomainCheck:
        name_account = main_domain.name_account
        if record is None or not record.is_valid:
            return MainDomainCheck(owner, name_account, None)
        tld_house, _ = self.seeds.find_tld_house(main_domain.tld)
        current_owner = await self.unwrap_owner(name_account, record, tld_house)
        if current_owner != owner:
            return MainDomainCheck(owner, name_account, None)
        return MainDomainCheck(owner, name_account, main_domain.domain_tld)

    # ---------------- records ----------------
    async def resolve_records(self, domain_tld: str, records: Sequence[Record]) -> dict[Record, str | None]:
        keys = [self.seeds.get_record_key(r, domain_tld) for r in records]
        values = {}
        for record_type, record in zip(records, await self.fetch_name_records(keys)):
            value = None
            if record is not None and record.is_valid and record.data:
                try:
                    value = record.payload_text() or None
                except DecodeError:
                    value = None
            values[Record(record_type)] = value
        return values

    def tld_house_for(self, tld: str) -> Pubkey:
        tld_house, _ = self.seeds.find_tld_house(normalize_tld(tld))
        return tld_house
