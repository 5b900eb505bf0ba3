import string

from funnel.cluster.token import generate_token, hash_token


def test_generate_token_is_64_hex_chars():
    token = generate_token()
    assert len(token) == 64
    assert set(token) <= set(string.hexdigits.lower())


def test_generate_token_is_random():
    assert len({generate_token() for _ in range(5)}) == 5


def test_hash_token_empty_string_digest():
    assert hash_token("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def test_hash_token_known_digest():
    assert hash_token("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_hash_token_is_deterministic_and_distinct():
    token = generate_token()
    assert hash_token(token) == hash_token(token)
    assert hash_token(token) != token
    assert len(hash_token(token)) == 64