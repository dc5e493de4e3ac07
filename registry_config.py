# ============================================================
# ANS registry configuration
# Program ids, seed prefixes, account layouts and policies
# ============================================================

import os
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass
from dataclasses import field
from enum import Enum

from dotenv import load_dotenv
from solders.pubkey import Pubkey

# ---------------- MAINNET ----------------
ANS_PROGRAM_ID = Pubkey.from_string("ALTNSZ46uaAUU7XUV6awvdorLGqAsPwa9shm7h4uP2FK")
TLD_HOUSE_PROGRAM_ID = Pubkey.from_string("TLDHkysf5pCnKsVA4gXpNvmy7psXLPEu4LAdDJthT9S")
NAME_HOUSE_PROGRAM_ID = Pubkey.from_string("NH3uX6FtVE2fNREAioP7hm5RaozotZxeL6khU1EHx51")
SPL_TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

HASH_PREFIX = "ALT Name Service"
ORIGIN_TLD = "ANS"

MAIN_DOMAIN_PREFIX = "main_domain"
NFT_RECORD_PREFIX = "nft_record"
TLD_HOUSE_PREFIX = "tld_house"
NAME_HOUSE_PREFIX = "name_house"
METADATA_PREFIX = "metadata"

# getMultipleAccounts hard limit of the RPC
MULTIPLE_ACCOUNT_INFO_MAX = 100

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_TLD_CONCURRENCY = 5
DEFAULT_ALL_TLDS_CONCURRENCY = 10

SECONDS_PER_DAY = 24 * 60 * 60
DEFAULT_GRACE_PERIOD_DAYS = 45
LEGACY_GRACE_PERIOD_DAYS = 50


class LayoutVersion(Enum):
    """On-chain account layout generation.

    V1: 136-byte name record header, fixed-length TLD label in the TLD house.
    V2: 200-byte name record header, length-prefixed TLD label.
    """

    V1 = "v1"
    V2 = "v2"


class GracePeriodPolicy(ABC):
    """How long a name record stays valid after `expires_at`."""

    needs_parent = False

    @abstractmethod
    def grace_period(self, parent_expires_at: int | None = None) -> int: ...


@dataclass(frozen=True)
class FixedGracePeriod(GracePeriodPolicy):
    days: int = DEFAULT_GRACE_PERIOD_DAYS

    def grace_period(self, parent_expires_at: int | None = None) -> int:
        return self.days * SECONDS_PER_DAY


@dataclass(frozen=True)
class ParentDerivedGracePeriod(GracePeriodPolicy):
    """Parent record's raw `expires_at` doubles as the grace period of its children."""

    fallback: FixedGracePeriod = field(default_factory=lambda: FixedGracePeriod(LEGACY_GRACE_PERIOD_DAYS))

    needs_parent = True

    def grace_period(self, parent_expires_at: int | None = None) -> int:
        if parent_expires_at:
            return parent_expires_at
        return self.fallback.grace_period()


@dataclass(frozen=True)
class RegistryConfig:
    ans_program_id: Pubkey = ANS_PROGRAM_ID
    tld_house_program_id: Pubkey = TLD_HOUSE_PROGRAM_ID
    name_house_program_id: Pubkey = NAME_HOUSE_PROGRAM_ID
    token_metadata_program_id: Pubkey = TOKEN_METADATA_PROGRAM_ID
    spl_token_program_id: Pubkey = SPL_TOKEN_PROGRAM_ID
    hash_prefix: str = HASH_PREFIX
    origin_tld: str = ORIGIN_TLD
    name_record_layout: LayoutVersion = LayoutVersion.V2
    tld_house_layout: LayoutVersion = LayoutVersion.V2
    grace_period_policy: GracePeriodPolicy = field(default_factory=FixedGracePeriod)
    require_valid_parent: bool = False
    batch_size: int = MULTIPLE_ACCOUNT_INFO_MAX
    concurrency: int = DEFAULT_TLD_CONCURRENCY
    all_tlds_concurrency: int = DEFAULT_ALL_TLDS_CONCURRENCY
    rpc_url: str = DEFAULT_RPC_URL
    commitment: str = "confirmed"

    def __post_init__(self) -> None:
        if not 0 < self.batch_size <= MULTIPLE_ACCOUNT_INFO_MAX:
            raise ValueError(f"batch_size must be between 1 and {MULTIPLE_ACCOUNT_INFO_MAX}")
        if self.concurrency < 1 or self.all_tlds_concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "RegistryConfig":
        load_dotenv(dotenv_path)

        policy: GracePeriodPolicy
        days = int(os.getenv("ANS_GRACE_PERIOD_DAYS", DEFAULT_GRACE_PERIOD_DAYS))
        if os.getenv("ANS_GRACE_PERIOD_POLICY", "fixed").lower() == "parent":
            policy = ParentDerivedGracePeriod(FixedGracePeriod(days))
        else:
            policy = FixedGracePeriod(days)

        concurrency = int(os.getenv("ANS_CONCURRENCY", DEFAULT_TLD_CONCURRENCY))
        return cls(
            name_record_layout=LayoutVersion(os.getenv("ANS_NAME_RECORD_LAYOUT", "v2").lower()),
            tld_house_layout=LayoutVersion(os.getenv("ANS_TLD_HOUSE_LAYOUT", "v2").lower()),
            grace_period_policy=policy,
            require_valid_parent=os.getenv("ANS_REQUIRE_VALID_PARENT", "").lower() in ("1", "true", "yes"),
            concurrency=concurrency,
            all_tlds_concurrency=int(os.getenv("ANS_ALL_TLDS_CONCURRENCY", DEFAULT_ALL_TLDS_CONCURRENCY)),
            rpc_url=os.getenv("ANS_RPC_URL", DEFAULT_RPC_URL),
        )
