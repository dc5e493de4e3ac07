import os
import sys
from collections import Counter

import pytest
from solders.pubkey import Pubkey

# Add project root to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from account_codec import MAIN_DOMAIN
from account_codec import MAIN_DOMAIN_DISCRIMINATOR
from account_codec import NFT_METADATA
from account_codec import NFT_RECORD
from account_codec import TLD_HOUSE_DISCRIMINATOR
from account_codec import TLD_HOUSE_V2
from account_codec import TOKEN_ACCOUNT
from account_codec import encode_name_record
from name_seeds import NameSeeds
from registry_config import MULTIPLE_ACCOUNT_INFO_MAX
from registry_config import RegistryConfig
from resolver_logic import NameResolver
from rpc_client import OwnedToken
from rpc_client import TokenHolder

NOW = 1_700_000_000
DAY = 24 * 60 * 60


class FakeRpc:
    """In-memory stand-in for `RegistryRpc`."""

    def __init__(self):
        self.accounts = {}
        self.program_accounts = {}
        self.largest_holders = {}
        self.owned_tokens = {}
        self.holder_error = None
        self.calls = Counter()
        self.closed = False
        self.data_slices = []

    async def get_account_info(self, address):
        self.calls["get_account_info"] += 1
        return self.accounts.get(address)

    async def get_multiple_accounts(self, addresses):
        self.calls["get_multiple_accounts"] += 1
        assert len(addresses) <= MULTIPLE_ACCOUNT_INFO_MAX
        return [self.accounts.get(a) for a in addresses]

    async def get_program_accounts(self, program_id, filters=(), data_slice=None):
        self.calls["get_program_accounts"] += 1
        self.data_slices.append(data_slice)
        found = []
        for address, data in self.program_accounts.get(program_id, []):
            if all(data[f.offset:f.offset + len(f.data)] == f.data for f in filters):
                if data_slice:
                    data = data[data_slice[0]:data_slice[0] + data_slice[1]]
                found.append((address, data))
        return found

    async def get_token_largest_holders(self, mint):
        self.calls["get_token_largest_holders"] += 1
        if self.holder_error:
            raise self.holder_error
        return self.largest_holders.get(mint, [])

    async def get_token_accounts_by_owner(self, owner):
        self.calls["get_token_accounts_by_owner"] += 1
        return self.owned_tokens.get(owner, [])

    async def close(self):
        self.closed = True

    def add_program_account(self, program_id, address, data):
        self.accounts[address] = data
        self.program_accounts.setdefault(program_id, []).append((address, data))


class Registry:
    """Builds registry fixtures on top of a `FakeRpc`."""

    def __init__(self, rpc: FakeRpc, config: RegistryConfig):
        self.rpc = rpc
        self.config = config
        self.seeds = NameSeeds(config)

    def encode(self, parent_name, owner, nclass=None, **kw):
        return encode_name_record(parent_name, owner, nclass, layout=self.config.name_record_layout, **kw)

    def tld_house(self, tld):
        return self.seeds.find_tld_house(tld)[0]

    def add_tld(self, tld):
        root = self.seeds.get_tld_account_key(tld)
        house = self.tld_house(tld)
        self.rpc.accounts[root] = self.encode(self.seeds.get_origin_name_account_key(), house)
        house_data = TLD_HOUSE_V2.build(dict(
            discriminator=TLD_HOUSE_DISCRIMINATOR,
            controller=bytes(Pubkey.new_unique()),
            registrar=bytes(Pubkey.new_unique()),
            parent_account=bytes(root),
            tld=tld,
        ))
        self.rpc.add_program_account(self.config.tld_house_program_id, house, house_data)
        return root

    def add_domain(self, label, tld, owner, expires_at=0, reverse=True):
        name_account = self.seeds.get_domain_key(label + tld)
        parent = self.seeds.get_tld_account_key(tld)
        data = self.encode(parent, owner, expires_at=expires_at, created_at=NOW - 400 * DAY)
        self.rpc.add_program_account(self.config.ans_program_id, name_account, data)
        if reverse:
            self.add_reverse_lookup(name_account, tld, label)
        return name_account

    def add_reverse_lookup(self, name_account, tld, label):
        house = self.tld_house(tld)
        key = self.seeds.find_reverse_lookup_account(name_account, house)
        self.rpc.accounts[key] = self.encode(Pubkey.default(), house, house, data=label.encode())
        return key

    def add_main_domain(self, owner, name_account, domain, tld):
        key, _ = self.seeds.find_main_domain(owner)
        self.rpc.accounts[key] = MAIN_DOMAIN.build(dict(
            discriminator=MAIN_DOMAIN_DISCRIMINATOR,
            name_account=bytes(name_account),
            tld=tld,
            domain=domain,
        ))
        return key

    def wrap_in_nft(self, label, tld, holder, tag=1, holders=None):
        """Moves `label.tld` into an NFT held by `holder`."""
        name_account = self.seeds.get_domain_key(label + tld)
        house = self.tld_house(tld)
        name_house, _ = self.seeds.find_name_house(house)
        nft_record, _ = self.seeds.find_nft_record(name_account, name_house)
        mint = Pubkey.new_unique()
        token_account = Pubkey.new_unique()

        self.rpc.add_program_account(
            self.config.ans_program_id,
            name_account,
            self.encode(self.seeds.get_tld_account_key(tld), nft_record),
        )
        self.rpc.accounts[nft_record] = NFT_RECORD.build(dict(
            discriminator=bytes(8),
            tag=tag,
            bump=255,
            name_account=bytes(name_account),
            nft_mint_account=bytes(mint),
        ))
        self.rpc.accounts[token_account] = TOKEN_ACCOUNT.build(dict(
            mint=bytes(mint), owner=bytes(holder), amount=1,
        )) + bytes(165 - 72)
        self.rpc.largest_holders[mint] = holders if holders is not None else [TokenHolder(token_account, 1, 0)]
        self.add_nft_metadata(holder, mint, label, name_house)
        return name_account, nft_record, mint

    def add_nft_metadata(self, holder, mint, label, creator, verified=True):
        metadata_key = self.seeds.find_metadata_address(mint)
        self.rpc.accounts[metadata_key] = NFT_METADATA.build(dict(
            key=4,
            update_authority=bytes(Pubkey.new_unique()),
            mint=bytes(mint),
            name=label.ljust(32, "\x00"),
            symbol="ANS".ljust(10, "\x00"),
            uri="".ljust(200, "\x00"),
            seller_fee_basis_points=0,
            has_creators=True,
            creators=[dict(address=bytes(creator), verified=verified, share=100)],
        ))
        self.rpc.owned_tokens.setdefault(holder, []).append(OwnedToken(mint, 1, 0))
        return metadata_key


@pytest.fixture
def config():
    return RegistryConfig()


@pytest.fixture
def rpc():
    return FakeRpc()


@pytest.fixture
def registry(rpc, config):
    return Registry(rpc, config)


@pytest.fixture
def resolver(rpc, config):
    return NameResolver(rpc, config, clock=lambda: NOW)
