import pytest

from protocom.kex import KeyExchangeError, X25519KeyExchange


def _pair():
    a, b = X25519KeyExchange(), X25519KeyExchange()
    a.init()
    b.init()
    a.load_other_key(b.public_key)
    b.load_other_key(a.public_key)
    return a, b


def test_both_sides_agree():
    a, b = _pair()
    assert a.agree() == b.agree()
    assert a.shared == b.shared
    assert len(a.shared) == 32


def test_derived_keys_match():
    a, b = _pair()
    a.agree()
    b.agree()
    key_a = a.derive_key256()
    assert key_a == b.derive_key256()
    assert len(key_a) == 32
    assert key_a != a.shared


def test_public_key_only_after_init():
    kex = X25519KeyExchange()
    assert kex.public_key is None
    kex.init()
    assert len(kex.public_key) == 32


def test_reinit_changes_public_key():
    kex = X25519KeyExchange()
    kex.init()
    first = kex.public_key
    kex.init()
    assert kex.public_key != first


@pytest.mark.parametrize("size", [0, 31, 33])
def test_wrong_key_length_rejected(size):
    kex = X25519KeyExchange()
    with pytest.raises(KeyExchangeError):
        kex.load_other_key(bytes(size))


def test_agree_without_peer_key_raises():
    kex = X25519KeyExchange()
    kex.init()
    with pytest.raises(KeyExchangeError):
        kex.agree()


def test_agree_without_init_raises():
    other = X25519KeyExchange()
    other.init()
    kex = X25519KeyExchange()
    kex.load_other_key(other.public_key)
    with pytest.raises(KeyExchangeError):
        kex.agree()


def test_derive_before_agree_raises():
    a, _ = _pair()
    assert a.shared is None
    with pytest.raises(KeyExchangeError):
        a.derive_key256()


def test_all_zero_peer_key_fails_agreement():
    kex = X25519KeyExchange()
    kex.init()
    kex.load_other_key(bytes(32))
    with pytest.raises(KeyExchangeError):
        kex.agree()