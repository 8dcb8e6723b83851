from kasir.app.security import hash_password, is_plaintext, needs_rehash, verify_password


def test_bcrypt_hash_roundtrip():
    h = hash_password("rahasia")
    assert h.startswith("$2")
    assert verify_password("rahasia", h) is True
    assert verify_password("salah", h) is False
    assert needs_rehash(h) is False


def test_legacy_plaintext_rows_still_verify_and_need_rehash():
    assert is_plaintext("admin123") is True
    assert verify_password("admin123", "admin123") is True
    assert verify_password("admin124", "admin123") is False
    assert needs_rehash("admin123") is True


def test_missing_hash_never_verifies():
    assert verify_password("x", None) is False
    assert verify_password("", "") is False
    assert needs_rehash(None) is False


def test_malformed_bcrypt_value_fails_closed():
    assert verify_password("x", "$2b$not-a-real-hash") is False
