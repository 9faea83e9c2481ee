from decimal import Decimal

from codec import FieldCodec, derive_key, looks_encrypted


SECRET = "0123456789abcdef0123456789abcdef"


def test_round_trip_uses_fresh_iv() -> None:
    codec = FieldCodec(SECRET)
    first = codec.encrypt("Coffee Shop")
    second = codec.encrypt("Coffee Shop")

    assert first != second
    iv_hex, cipher_hex = first.split(":")
    assert len(iv_hex) == 32
    assert len(cipher_hex) % 32 == 0
    assert codec.decrypt(first) == "Coffee Shop"
    assert codec.decrypt(second) == "Coffee Shop"


def test_numbers_are_stringified_before_encryption() -> None:
    codec = FieldCodec(SECRET)
    assert codec.decrypt(codec.encrypt(12.5)) == "12.5"
    assert codec.decrypt_to_decimal(codec.encrypt(Decimal("987.50"))) == Decimal(
        "987.50"
    )
    assert codec.decrypt_to_number(codec.encrypt(Decimal("3.25"))) == 3.25


def test_none_and_empty_pass_through() -> None:
    codec = FieldCodec(SECRET)
    assert codec.encrypt(None) is None
    assert codec.decrypt(None) is None
    assert codec.decrypt("") == ""


def test_legacy_plaintext_is_returned_unchanged() -> None:
    codec = FieldCodec(SECRET)
    assert codec.decrypt("Groceries") == "Groceries"
    assert codec.decrypt("a:b:c") == "a:b:c"
    assert codec.decrypt("zz:not-hex") == "zz:not-hex"
    assert codec.decrypt("00:00") == "00:00"
    assert codec.decrypt_to_number("150") == 150.0


def test_unparseable_numbers_become_zero() -> None:
    codec = FieldCodec(SECRET)
    assert codec.decrypt_to_number(None) == 0.0
    assert codec.decrypt_to_number("abc") == 0.0
    assert codec.decrypt_to_number(codec.encrypt("nan")) == 0.0
    assert codec.decrypt_to_number(codec.encrypt("inf")) == 0.0
    assert codec.decrypt_to_decimal(codec.encrypt("Infinity")) == Decimal("0")
    assert codec.decrypt_to_decimal("not a number") == Decimal("0")


def test_derive_key_accepts_hex_and_raw_secrets() -> None:
    hex_secret = "ab" * 32
    assert derive_key(hex_secret) == bytes.fromhex(hex_secret)
    assert derive_key(SECRET) == SECRET.encode("utf-8")

    short = derive_key("short")
    assert len(short) == 32
    assert short.startswith(b"short")
    assert len(derive_key("x" * 40)) == 32


def test_looks_encrypted_matches_only_codec_output() -> None:
    codec = FieldCodec(SECRET)
    assert looks_encrypted(codec.encrypt("12.5"))
    assert not looks_encrypted("12.5")
    assert not looks_encrypted("Lunch at 12:30")
    assert not looks_encrypted("00:00")
    assert not looks_encrypted(None)
    assert not looks_encrypted("")
    assert not looks_encrypted("ab" * 16 + ":" + "zz" * 16)
