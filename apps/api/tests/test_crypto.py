from services.crypto import decrypt_secret, encrypt_secret


def test_secret_roundtrip_is_not_plaintext():
    encrypted = encrypt_secret("123456:telegram-bot-token")
    assert "telegram-bot-token" not in encrypted
    assert decrypt_secret(encrypted) == "123456:telegram-bot-token"


def test_decrypt_secret_tolerates_missing_or_foreign_values():
    assert decrypt_secret(None) is None
    assert decrypt_secret("") is None
    assert decrypt_secret("not-a-fernet-token") is None
