"""Byte-exact decoders for ANS, TLD house, name house and token accounts.

Every decoder is pure: it takes raw account data and returns a typed record
or raises a `DecodeError` subclass. Callers decide whether a failure means
"no such account".
"""

from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
from enum import IntEnum

import base58
from construct import Bytes
from construct import ConstructError
from construct import Flag
from construct import If
from construct import Int8ul
from construct import Int16ul
from construct import Int32ul
from construct import Int64ul
from construct import Padding
from construct import PaddedString
from construct import PascalString
from construct import PrefixedArray
from construct import StreamError
from construct import Struct
from construct import this
from solders.pubkey import Pubkey

from exceptions import BadDiscriminatorError
from exceptions import DecodeError
from exceptions import TooShortError
from registry_config import LayoutVersion

NAME_RECORD_DISCRIMINATOR = bytes([68, 72, 88, 44, 15, 167, 103, 243])
MAIN_DOMAIN_DISCRIMINATOR = bytes([109, 239, 227, 199, 98, 226, 66, 175])
TLD_HOUSE_DISCRIMINATOR = base58.b58decode("iQgos3SdaVE")

# Byte offsets used by getProgramAccounts memcmp filters
NAME_RECORD_PARENT_OFFSET = 8
NAME_RECORD_OWNER_OFFSET = 40
TLD_HOUSE_PARENT_OFFSET = 8 + 32 + 32
TLD_HOUSE_TLD_OFFSET = 8 + 32 + 32 + 32
TLD_LABEL_V1_LEN = 32

# ---------------- layouts ----------------
NAME_RECORD_HEADER_V1 = Struct(
    "discriminator" / Bytes(8),
    "parent_name" / Bytes(32),
    "owner" / Bytes(32),
    "nclass" / Bytes(32),
    "expires_at" / Int64ul,
    Padding(24),
)

NAME_RECORD_HEADER_V2 = Struct(
    "discriminator" / Bytes(8),
    "parent_name" / Bytes(32),
    "owner" / Bytes(32),
    "nclass" / Bytes(32),
    "expires_at" / Int64ul,
    "created_at" / Int64ul,
    "non_transferable" / Int8ul,
    Padding(79),
)

NAME_RECORD_HEADERS = {
    LayoutVersion.V1: NAME_RECORD_HEADER_V1,
    LayoutVersion.V2: NAME_RECORD_HEADER_V2,
}

MAIN_DOMAIN = Struct(
    "discriminator" / Bytes(8),
    "name_account" / Bytes(32),
    "tld" / PascalString(Int32ul, "utf8"),
    "domain" / PascalString(Int32ul, "utf8"),
)

TLD_HOUSE_V1 = Struct(
    "discriminator" / Bytes(8),
    "controller" / Bytes(32),
    "registrar" / Bytes(32),
    "parent_account" / Bytes(32),
    Padding(4),
    "tld" / PaddedString(TLD_LABEL_V1_LEN, "utf8"),
)

TLD_HOUSE_V2 = Struct(
    "discriminator" / Bytes(8),
    "controller" / Bytes(32),
    "registrar" / Bytes(32),
    "parent_account" / Bytes(32),
    "tld" / PascalString(Int32ul, "utf8"),
)

TLD_HOUSES = {
    LayoutVersion.V1: TLD_HOUSE_V1,
    LayoutVersion.V2: TLD_HOUSE_V2,
}

NFT_RECORD = Struct(
    "discriminator" / Bytes(8),
    "tag" / Int8ul,
    "bump" / Int8ul,
    "name_account" / Bytes(32),
    "nft_mint_account" / Bytes(32),
)

TOKEN_ACCOUNT = Struct(
    "mint" / Bytes(32),
    "owner" / Bytes(32),
    "amount" / Int64ul,
)

CREATOR = Struct(
    "address" / Bytes(32),
    "verified" / Flag,
    "share" / Int8ul,
)

NFT_METADATA = Struct(
    "key" / Int8ul,
    "update_authority" / Bytes(32),
    "mint" / Bytes(32),
    "name" / PascalString(Int32ul, "utf8"),
    "symbol" / PascalString(Int32ul, "utf8"),
    "uri" / PascalString(Int32ul, "utf8"),
    "seller_fee_basis_points" / Int16ul,
    "has_creators" / Flag,
    "creators" / If(this.has_creators, PrefixedArray(Int32ul, CREATOR)),
)


class NftRecordTag(IntEnum):
    UNINITIALIZED = 0
    ACTIVE_RECORD = 1
    INACTIVE_RECORD = 2


# ---------------- records ----------------
def _isoformat(seconds: int):
    """UTC ISO timestamp, or the raw seconds when out of datetime's range."""
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return seconds


@dataclass
class NameRecord:
    parent_name: Pubkey
    owner: Pubkey
    nclass: Pubkey
    expires_at: int
    created_at: int = 0
    non_transferable: bool = False
    data: bytes = b""
    layout: LayoutVersion = LayoutVersion.V2
    # Filled in by the resolver; `owner` keeps the raw bytes either way
    is_valid: bool | None = None
    effective_owner: Pubkey | None = None

    @property
    def expires_at_ms(self) -> int:
        return self.expires_at * 1000

    @property
    def created_at_ms(self) -> int:
        return self.created_at * 1000

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    @property
    def created_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.created_at, tz=timezone.utc)

    def payload_text(self) -> str:
        """Trailing payload as text, cut at the first NUL."""
        return decode_label(self.data)

    def pretty(self):
        return {
            "parentName": str(self.parent_name),
            "owner": str(self.effective_owner) if self.effective_owner else None,
            "nclass": str(self.nclass),
            "expiresAt": _isoformat(self.expires_at) if self.expires_at else None,
            "createdAt": _isoformat(self.created_at) if self.created_at else None,
            "nonTransferable": self.non_transferable,
            "isValid": self.is_valid,
            "data": self.payload_text() if self.data else "",
        }


@dataclass(frozen=True)
class MainDomainRecord:
    name_account: Pubkey
    tld: str
    domain: str

    @property
    def domain_tld(self) -> str:
        return self.domain + self.tld


@dataclass(frozen=True)
class TldHouseRecord:
    controller: Pubkey
    registrar: Pubkey
    parent_account: Pubkey
    tld: str


@dataclass(frozen=True)
class NftRecord:
    tag: int
    name_account: Pubkey
    nft_mint_account: Pubkey

    @property
    def is_active(self) -> bool:
        return self.tag == NftRecordTag.ACTIVE_RECORD


@dataclass(frozen=True)
class TokenAccount:
    mint: Pubkey
    owner: Pubkey
    amount: int


@dataclass(frozen=True)
class NftMetadata:
    mint: Pubkey
    name: str
    symbol: str
    first_creator: Pubkey | None
    first_creator_verified: bool


# ---------------- decoders ----------------
def decode_label(raw: bytes) -> str:
    try:
        return raw.split(b"\x00", 1)[0].decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError("label is not valid UTF-8") from e


def _parse(layout: Struct, data: bytes, min_size: int, kind: str):
    if len(data) < min_size:
        raise TooShortError(f"{kind}: {len(data)} bytes, need {min_size}")
    try:
        return layout.parse(data)
    except StreamError as e:
        raise TooShortError(f"{kind}: {e}") from e
    except (ConstructError, UnicodeDecodeError) as e:
        raise DecodeError(f"{kind}: {e}") from e


def _check_discriminator(actual: bytes, expected: bytes, kind: str) -> None:
    if actual != expected:
        raise BadDiscriminatorError(f"{kind}: got {actual.hex()}, expected {expected.hex()}")


def name_record_header_size(layout: LayoutVersion = LayoutVersion.V2) -> int:
    return NAME_RECORD_HEADERS[layout].sizeof()


def decode_name_record(data: bytes, layout: LayoutVersion = LayoutVersion.V2) -> NameRecord:
    data = bytes(data)
    header_size = name_record_header_size(layout)
    parsed = _parse(NAME_RECORD_HEADERS[layout], data, header_size, "name record")
    _check_discriminator(parsed.discriminator, NAME_RECORD_DISCRIMINATOR, "name record")
    return NameRecord(
        parent_name=Pubkey.from_bytes(parsed.parent_name),
        owner=Pubkey.from_bytes(parsed.owner),
        nclass=Pubkey.from_bytes(parsed.nclass),
        expires_at=parsed.expires_at,
        created_at=parsed.get("created_at", 0),
        non_transferable=parsed.get("non_transferable", 0) != 0,
        data=data[header_size:],
        layout=layout,
    )


def encode_name_record(parent_name: Pubkey, owner: Pubkey, nclass: Pubkey = None, expires_at: int = 0,
                       created_at: int = 0, non_transferable: bool = False, data: bytes = b"",
                       layout: LayoutVersion = LayoutVersion.V2) -> bytes:
    """Inverse of `decode_name_record`, used to build fixtures."""
    fields = dict(
        discriminator=NAME_RECORD_DISCRIMINATOR,
        parent_name=bytes(parent_name),
        owner=bytes(owner),
        nclass=bytes(nclass) if nclass else bytes(32),
        expires_at=expires_at,
    )
    if layout is LayoutVersion.V2:
        fields.update(created_at=created_at, non_transferable=int(non_transferable))
    return NAME_RECORD_HEADERS[layout].build(fields) + bytes(data)


def decode_main_domain(data: bytes) -> MainDomainRecord:
    parsed = _parse(MAIN_DOMAIN, bytes(data), 8 + 32 + 4 + 4, "main domain")
    _check_discriminator(parsed.discriminator, MAIN_DOMAIN_DISCRIMINATOR, "main domain")
    return MainDomainRecord(
        name_account=Pubkey.from_bytes(parsed.name_account),
        tld=parsed.tld,
        domain=parsed.domain,
    )


def decode_tld_house(data: bytes, layout: LayoutVersion = LayoutVersion.V2) -> TldHouseRecord:
    data = bytes(data)
    min_size = TLD_HOUSE_TLD_OFFSET + 4
    if layout is LayoutVersion.V1:
        min_size += TLD_LABEL_V1_LEN
    parsed = _parse(TLD_HOUSES[layout], data, min_size, "tld house")
    _check_discriminator(parsed.discriminator, TLD_HOUSE_DISCRIMINATOR, "tld house")
    return TldHouseRecord(
        controller=Pubkey.from_bytes(parsed.controller),
        registrar=Pubkey.from_bytes(parsed.registrar),
        parent_account=Pubkey.from_bytes(parsed.parent_account),
        tld=parsed.tld.split("\x00", 1)[0],
    )


def decode_nft_record(data: bytes) -> NftRecord:
    parsed = _parse(NFT_RECORD, bytes(data), NFT_RECORD.sizeof(), "nft record")
    return NftRecord(
        tag=parsed.tag,
        name_account=Pubkey.from_bytes(parsed.name_account),
        nft_mint_account=Pubkey.from_bytes(parsed.nft_mint_account),
    )


def decode_token_account(data: bytes) -> TokenAccount:
    parsed = _parse(TOKEN_ACCOUNT, bytes(data), TOKEN_ACCOUNT.sizeof(), "token account")
    return TokenAccount(
        mint=Pubkey.from_bytes(parsed.mint),
        owner=Pubkey.from_bytes(parsed.owner),
        amount=parsed.amount,
    )


def decode_nft_metadata(data: bytes) -> NftMetadata:
    parsed = _parse(NFT_METADATA, bytes(data), 1 + 32 + 32 + 4, "nft metadata")
    creators = parsed.creators or []
    first = creators[0] if creators else None
    return NftMetadata(
        mint=Pubkey.from_bytes(parsed.mint),
        name=parsed.name.replace("\x00", ""),
        symbol=parsed.symbol.replace("\x00", ""),
        first_creator=Pubkey.from_bytes(first.address) if first else None,
        first_creator_verified=bool(first.verified) if first else False,
    )
