import hashlib
from enum import Enum
from functools import lru_cache

import base58
from solders.pubkey import Pubkey

from exceptions import DerivationExhausted
from exceptions import InvalidAddressFormat
from exceptions import InvalidSeedError
from registry_config import HASH_PREFIX
from registry_config import MAIN_DOMAIN_PREFIX
from registry_config import METADATA_PREFIX
from registry_config import NAME_HOUSE_PREFIX
from registry_config import NFT_RECORD_PREFIX
from registry_config import TLD_HOUSE_PREFIX
from registry_config import RegistryConfig

MAX_SEEDS = 16
MAX_SEED_LEN = 32
ZERO_SEED = bytes(32)


class SeedKind(Enum):
    NAME_RECORD = "name_record"
    MAIN_DOMAIN = "main_domain"
    NFT_RECORD = "nft_record"
    TLD_HOUSE = "tld_house"
    NAME_HOUSE = "name_house"


class Record(str, Enum):
    """DNS-style records stored as sub-accounts of a domain."""

    IPFS = "IPFS"
    ARWV = "ARWV"
    SOL = "SOL"
    ETH = "ETH"
    BTC = "BTC"
    APTOS = "APTOS"
    NEAR = "NEAR"
    STACKS = "STACKS"
    BASE = "BASE"
    SUI = "SUI"
    LATTICA = "Lattica"
    LTC = "LTC"
    DOGE = "DOGE"
    Email = "Email"
    Url = "Url"
    Discord = "Discord"
    Github = "Github"
    Reddit = "Reddit"
    Twitter = "Twitter"
    Telegram = "Telegram"
    Pic = "Pic"
    SHDW = "SHDW"
    POINT = "POINT"


def parse_address(value) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not isinstance(value, str):
        raise InvalidAddressFormat(repr(value))
    try:
        raw = base58.b58decode(value.strip())
    except ValueError as e:
        raise InvalidAddressFormat(value) from e
    if len(raw) != 32:
        raise InvalidAddressFormat(value)
    return Pubkey.from_bytes(raw)


def get_hashed_name(name: str, hash_prefix: str = HASH_PREFIX) -> bytes:
    return hashlib.sha256((hash_prefix + name).encode("utf-8")).digest()


def normalize_tld(tld: str) -> str:
    """`ABC`, `abc` and `.abc` all become `.abc`."""
    tld = tld.strip().lower()
    if not tld.startswith("."):
        tld = "." + tld
    return tld


def split_domain_tld(domain_tld: str):
    """`ipfs.miester.poor` -> (".poor", "miester", "ipfs")"""
    parts = domain_tld.strip().split(".")
    if len(parts) == 1:
        return "", parts[0], ""
    return normalize_tld(parts[-1]), parts[-2], ".".join(parts[:-2])


# ---------------- seeds ----------------
def build_name_record_seeds(hashed_name: bytes, name_class: Pubkey = None, parent_name: Pubkey = None):
    return [
        hashed_name,
        bytes(name_class) if name_class else ZERO_SEED,
        bytes(parent_name) if parent_name else ZERO_SEED,
    ]


def build_main_domain_seeds(owner: Pubkey):
    return [MAIN_DOMAIN_PREFIX.encode(), bytes(owner)]


def build_nft_record_seeds(name_house: Pubkey, name_account: Pubkey):
    return [NFT_RECORD_PREFIX.encode(), bytes(name_house), bytes(name_account)]


def build_tld_house_seeds(tld: str):
    # A case mismatch here derives a valid but empty address
    return [TLD_HOUSE_PREFIX.encode(), normalize_tld(tld).encode("utf-8")]


def build_name_house_seeds(tld_house: Pubkey):
    return [NAME_HOUSE_PREFIX.encode(), bytes(tld_house)]


def build_metadata_seeds(mint: Pubkey, metadata_program_id: Pubkey):
    return [METADATA_PREFIX.encode(), bytes(metadata_program_id), bytes(mint)]


def build_seeds(kind: SeedKind, hashed_name: bytes = None, name_class: Pubkey = None,
                parent_name: Pubkey = None, tld: str = None):
    """Seed tuple for `kind`.

    NAME_RECORD uses `hashed_name`, `name_class` and `parent_name`.
    MAIN_DOMAIN takes the owner as `parent_name`, NFT_RECORD takes the name
    house as `name_class` and the name account as `parent_name`, TLD_HOUSE
    takes `tld` and NAME_HOUSE takes the TLD house as `parent_name`.
    """
    if kind is SeedKind.NAME_RECORD:
        return build_name_record_seeds(hashed_name, name_class, parent_name)
    if kind is SeedKind.MAIN_DOMAIN:
        return build_main_domain_seeds(parent_name)
    if kind is SeedKind.NFT_RECORD:
        return build_nft_record_seeds(name_class, parent_name)
    if kind is SeedKind.TLD_HOUSE:
        return build_tld_house_seeds(tld)
    if kind is SeedKind.NAME_HOUSE:
        return build_name_house_seeds(parent_name)
    raise InvalidSeedError(f"unknown seed kind {kind}")


# ---------------- derivation ----------------
@lru_cache(maxsize=4096)
def _find_program_address(program_id: Pubkey, seeds: tuple):
    try:
        return Pubkey.find_program_address(list(seeds), program_id)
    except ValueError as e:
        raise DerivationExhausted(str(program_id)) from e


def derive_address(program_id: Pubkey, seeds):
    """Returns `(address, bump)`; same inputs always give the same pair."""
    seeds = tuple(bytes(s) for s in seeds)
    if len(seeds) > MAX_SEEDS:
        raise InvalidSeedError(f"{len(seeds)} seeds, at most {MAX_SEEDS} allowed")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InvalidSeedError(f"seed of {len(seed)} bytes, at most {MAX_SEED_LEN} allowed")
    return _find_program_address(program_id, seeds)


class NameSeeds:
    """Address derivation bound to one registry deployment."""

    def __init__(self, config: RegistryConfig = None):
        self.config = config or RegistryConfig()

    def get_hashed_name(self, name: str) -> bytes:
        return get_hashed_name(name, self.config.hash_prefix)

    def get_name_account_key_with_bump(self, hashed_name: bytes, name_class: Pubkey = None,
                                       parent_name: Pubkey = None):
        seeds = build_name_record_seeds(hashed_name, name_class, parent_name)
        return derive_address(self.config.ans_program_id, seeds)

    def get_name_account_key(self, hashed_name: bytes, name_class: Pubkey = None,
                             parent_name: Pubkey = None) -> Pubkey:
        key, _ = self.get_name_account_key_with_bump(hashed_name, name_class, parent_name)
        return key

    def get_origin_name_account_key(self) -> Pubkey:
        return self.get_name_account_key(self.get_hashed_name(self.config.origin_tld))

    def get_tld_account_key(self, tld: str) -> Pubkey:
        """Root name record of a TLD, a child of the origin record."""
        hashed = self.get_hashed_name(normalize_tld(tld))
        return self.get_name_account_key(hashed, None, self.get_origin_name_account_key())

    def get_domain_key(self, domain_tld: str) -> Pubkey:
        """Name account of `label.tld` or of a subdomain such as `sub.label.tld`."""
        tld, domain, subdomain = split_domain_tld(domain_tld)
        if not tld:
            raise InvalidSeedError(f"{domain_tld!r} has no TLD")
        key = self.get_name_account_key(self.get_hashed_name(domain), None, self.get_tld_account_key(tld))
        if subdomain:
            for label in reversed(subdomain.split(".")):
                key = self.get_name_account_key(self.get_hashed_name(label), None, key)
        return key

    def get_record_key(self, record: Record, domain_tld: str) -> Pubkey:
        return self.get_domain_key(f"{Record(record).value}.{domain_tld}")

    def find_reverse_lookup_account(self, name_account: Pubkey, tld_house: Pubkey) -> Pubkey:
        # Reverse lookups hash the account address and put the TLD house in the class slot
        hashed = self.get_hashed_name(str(name_account))
        return self.get_name_account_key(hashed, tld_house, None)

    def find_main_domain(self, owner: Pubkey):
        return derive_address(self.config.tld_house_program_id, build_main_domain_seeds(owner))

    def find_tld_house(self, tld: str):
        return derive_address(self.config.tld_house_program_id, build_tld_house_seeds(tld))

    def find_name_house(self, tld_house: Pubkey):
        return derive_address(self.config.name_house_program_id, build_name_house_seeds(tld_house))

    def find_nft_record(self, name_account: Pubkey, name_house: Pubkey):
        return derive_address(self.config.name_house_program_id, build_nft_record_seeds(name_house, name_account))

    def find_mint_address(self, name_account: Pubkey, name_house: Pubkey, expires_at: int = 0):
        seeds = [NAME_HOUSE_PREFIX.encode(), bytes(name_house), bytes(name_account)]
        if expires_at:
            # Renewable domains get a fresh mint per expiry
            seeds.append(expires_at.to_bytes(8, "big"))
        return derive_address(self.config.name_house_program_id, seeds)

    def find_metadata_address(self, mint: Pubkey) -> Pubkey:
        program_id = self.config.token_metadata_program_id
        key, _ = derive_address(program_id, build_metadata_seeds(mint, program_id))
        return key
