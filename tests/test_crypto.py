import base64

import pytest

from nowplaying.shared.crypto import (
    PREFIX,
    TokenCipher,
    TokenDecryptError,
    generate_key,
    token_fingerprint,
)

KEY = base64.b64encode(b"k" * 32).decode()


def test_round_trip():
    cipher = TokenCipher(KEY)

    sealed = cipher.encrypt("spotify-access-0")

    assert sealed.startswith(PREFIX)
    assert "spotify-access-0" not in sealed
    assert cipher.decrypt(sealed) == "spotify-access-0"


def test_each_seal_uses_a_fresh_nonce():
    cipher = TokenCipher(KEY)

    assert cipher.encrypt("same") != cipher.encrypt("same")


def test_wrong_key_is_rejected():
    sealed = TokenCipher(KEY).encrypt("secret")

    with pytest.raises(TokenDecryptError):
        TokenCipher(generate_key()).decrypt(sealed)


def test_encrypted_value_needs_a_key():
    sealed = TokenCipher(KEY).encrypt("secret")

    with pytest.raises(TokenDecryptError):
        TokenCipher().decrypt(sealed)


def test_tampered_value_is_rejected():
    sealed = TokenCipher(KEY).encrypt("secret")
    body = bytearray(base64.b64decode(sealed[len(PREFIX):]))
    body[-1] ^= 1
    tampered = PREFIX + base64.b64encode(bytes(body)).decode()

    with pytest.raises(TokenDecryptError):
        TokenCipher(KEY).decrypt(tampered)

    with pytest.raises(TokenDecryptError):
        TokenCipher(KEY).decrypt(PREFIX + "not base64!")

    with pytest.raises(TokenDecryptError):
        TokenCipher(KEY).decrypt(PREFIX + base64.b64encode(b"short").decode())


def test_plaintext_rows_still_read():
    assert TokenCipher(KEY).decrypt("legacy-token") == "legacy-token"
    assert TokenCipher().decrypt("legacy-token") == "legacy-token"


def test_without_key_tokens_pass_through():
    cipher = TokenCipher("")

    assert not cipher.enabled
    assert cipher.encrypt("secret") == "secret"


@pytest.mark.parametrize(
    "key",
    [
        "r" * 32,
        base64.b64encode(b"\xfb" * 32).decode(),
        base64.urlsafe_b64encode(b"\xfb" * 32).decode().rstrip("="),
        generate_key(),
    ],
)
def test_accepted_key_formats(key):
    cipher = TokenCipher(key)

    assert cipher.enabled
    assert cipher.decrypt(cipher.encrypt("secret")) == "secret"


@pytest.mark.parametrize("key", ["too-short", base64.b64encode(b"x" * 16).decode()])
def test_malformed_key_is_refused(key):
    with pytest.raises(ValueError, match="TOKEN_ENCRYPTION_KEY"):
        TokenCipher(key)


def test_fingerprint_ignores_encryption():
    assert token_fingerprint("abc") == token_fingerprint("abc")
    assert token_fingerprint("abc") != token_fingerprint("abd")
    assert len(token_fingerprint("abc")) == 64
