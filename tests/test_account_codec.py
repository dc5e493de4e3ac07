import base58
import pytest
from solders.pubkey import Pubkey

from account_codec import MAIN_DOMAIN
from account_codec import MAIN_DOMAIN_DISCRIMINATOR
from account_codec import NAME_RECORD_DISCRIMINATOR
from account_codec import NFT_METADATA
from account_codec import NFT_RECORD
from account_codec import TLD_HOUSE_DISCRIMINATOR
from account_codec import TLD_HOUSE_V1
from account_codec import TLD_HOUSE_V2
from account_codec import TOKEN_ACCOUNT
from account_codec import NftRecordTag
from account_codec import decode_label
from account_codec import decode_main_domain
from account_codec import decode_name_record
from account_codec import decode_nft_metadata
from account_codec import decode_nft_record
from account_codec import decode_tld_house
from account_codec import decode_token_account
from account_codec import encode_name_record
from account_codec import name_record_header_size
from exceptions import BadDiscriminatorError
from exceptions import DecodeError
from exceptions import TooShortError
from registry_config import LayoutVersion


def test_header_sizes():
    assert name_record_header_size(LayoutVersion.V2) == 200
    assert name_record_header_size(LayoutVersion.V1) == 136
    assert TLD_HOUSE_DISCRIMINATOR == base58.b58decode("iQgos3SdaVE")


def test_name_record_v2():
    parent, owner, nclass = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
    data = encode_name_record(parent, owner, nclass, expires_at=1_700_000_000, created_at=1_600_000_000,
                              non_transferable=True, data=b"miester\x00\x00")
    assert len(data) == 209
    assert data[:8] == NAME_RECORD_DISCRIMINATOR
    assert data[8:40] == bytes(parent)
    assert data[40:72] == bytes(owner)

    record = decode_name_record(data)
    assert record.parent_name == parent
    assert record.owner == owner
    assert record.nclass == nclass
    assert record.expires_at == 1_700_000_000
    assert record.expires_at_ms == 1_700_000_000_000
    assert record.created_at == 1_600_000_000
    assert record.non_transferable is True
    assert record.data == b"miester\x00\x00"
    assert record.payload_text() == "miester"
    assert record.is_valid is None


def test_name_record_v1():
    parent, owner = Pubkey.new_unique(), Pubkey.new_unique()
    data = encode_name_record(parent, owner, expires_at=42, data=b"x", layout=LayoutVersion.V1)
    assert len(data) == 137

    record = decode_name_record(data, LayoutVersion.V1)
    assert record.owner == owner
    assert record.nclass == Pubkey.default()
    assert record.expires_at == 42
    assert record.created_at == 0
    assert record.non_transferable is False
    assert record.data == b"x"
    assert record.layout is LayoutVersion.V1


def test_name_record_too_short():
    data = encode_name_record(Pubkey.new_unique(), Pubkey.new_unique())
    with pytest.raises(TooShortError):
        decode_name_record(data[:199])
    with pytest.raises(DecodeError):
        decode_name_record(b"")


def test_name_record_bad_discriminator():
    data = bytearray(encode_name_record(Pubkey.new_unique(), Pubkey.new_unique()))
    data[0] ^= 0xFF
    with pytest.raises(BadDiscriminatorError):
        decode_name_record(bytes(data))


def test_pretty():
    owner = Pubkey.new_unique()
    record = decode_name_record(encode_name_record(Pubkey.new_unique(), owner, expires_at=0, data=b"hi"))
    record.is_valid = True
    record.effective_owner = owner
    pretty = record.pretty()
    assert pretty["owner"] == str(owner)
    assert pretty["expiresAt"] is None
    assert pretty["isValid"] is True
    assert pretty["data"] == "hi"


def test_pretty_with_out_of_range_timestamps():
    far = 2 ** 64 - 1
    record = decode_name_record(encode_name_record(
        Pubkey.new_unique(), Pubkey.new_unique(), expires_at=far, created_at=1_600_000_000,
    ))
    pretty = record.pretty()
    assert pretty["expiresAt"] == far
    assert pretty["createdAt"] == "2020-09-13T12:26:40+00:00"


def test_decode_label():
    assert decode_label(b"abc\x00junk") == "abc"
    assert decode_label(b"") == ""
    with pytest.raises(DecodeError):
        decode_label(b"\xff\xfe")


def test_main_domain():
    name_account = Pubkey.new_unique()
    data = MAIN_DOMAIN.build(dict(
        discriminator=MAIN_DOMAIN_DISCRIMINATOR, name_account=bytes(name_account), tld=".abc", domain="miester",
    ))
    record = decode_main_domain(data)
    assert record.name_account == name_account
    assert record.tld == ".abc"
    assert record.domain == "miester"
    assert record.domain_tld == "miester.abc"


def test_main_domain_declared_length_past_end():
    data = (MAIN_DOMAIN_DISCRIMINATOR + bytes(Pubkey.new_unique())
            + (1000).to_bytes(4, "little") + b".abc" + (0).to_bytes(4, "little"))
    with pytest.raises(TooShortError):
        decode_main_domain(data)


def test_main_domain_bad_discriminator():
    data = MAIN_DOMAIN.build(dict(
        discriminator=bytes(8), name_account=bytes(32), tld=".abc", domain="x",
    ))
    with pytest.raises(BadDiscriminatorError):
        decode_main_domain(data)


def _tld_house_fields(**kw):
    fields = dict(
        discriminator=TLD_HOUSE_DISCRIMINATOR,
        controller=bytes(Pubkey.new_unique()),
        registrar=bytes(Pubkey.new_unique()),
        parent_account=bytes(Pubkey.new_unique()),
        tld=".abc",
    )
    fields.update(kw)
    return fields


def test_tld_house_v2():
    fields = _tld_house_fields()
    house = decode_tld_house(TLD_HOUSE_V2.build(fields))
    assert house.tld == ".abc"
    assert bytes(house.parent_account) == fields["parent_account"]
    assert bytes(house.controller) == fields["controller"]


def test_tld_house_v1():
    fields = _tld_house_fields(tld=".poor")
    house = decode_tld_house(TLD_HOUSE_V1.build(fields), LayoutVersion.V1)
    assert house.tld == ".poor"
    assert bytes(house.registrar) == fields["registrar"]


def test_tld_house_errors():
    with pytest.raises(TooShortError):
        decode_tld_house(TLD_HOUSE_DISCRIMINATOR + bytes(50))
    with pytest.raises(BadDiscriminatorError):
        decode_tld_house(TLD_HOUSE_V2.build(_tld_house_fields(discriminator=bytes(8))))


def test_nft_record():
    name_account, mint = Pubkey.new_unique(), Pubkey.new_unique()
    data = NFT_RECORD.build(dict(
        discriminator=bytes(8), tag=NftRecordTag.ACTIVE_RECORD, bump=254,
        name_account=bytes(name_account), nft_mint_account=bytes(mint),
    ))
    record = decode_nft_record(data)
    assert record.is_active
    assert record.name_account == name_account
    assert record.nft_mint_account == mint

    with pytest.raises(TooShortError):
        decode_nft_record(data[:-1])


def test_token_account():
    mint, owner = Pubkey.new_unique(), Pubkey.new_unique()
    data = TOKEN_ACCOUNT.build(dict(mint=bytes(mint), owner=bytes(owner), amount=1)) + bytes(93)
    token = decode_token_account(data)
    assert token.mint == mint
    assert token.owner == owner
    assert token.amount == 1


def test_nft_metadata():
    mint, creator = Pubkey.new_unique(), Pubkey.new_unique()
    data = NFT_METADATA.build(dict(
        key=4,
        update_authority=bytes(32),
        mint=bytes(mint),
        name="miester".ljust(32, "\x00"),
        symbol="ANS",
        uri="",
        seller_fee_basis_points=0,
        has_creators=True,
        creators=[dict(address=bytes(creator), verified=True, share=100),
                  dict(address=bytes(32), verified=False, share=0)],
    )) + bytes(64)
    meta = decode_nft_metadata(data)
    assert meta.mint == mint
    assert meta.name == "miester"
    assert meta.symbol == "ANS"
    assert meta.first_creator == creator
    assert meta.first_creator_verified is True


def test_nft_metadata_without_creators():
    data = NFT_METADATA.build(dict(
        key=4, update_authority=bytes(32), mint=bytes(32), name="x", symbol="", uri="",
        seller_fee_basis_points=0, has_creators=False, creators=None,
    ))
    meta = decode_nft_metadata(data)
    assert meta.first_creator is None
    assert meta.first_creator_verified is False
