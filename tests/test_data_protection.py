from cryptography.fernet import Fernet

from app.security import (
    generate_encryption_key,
    pseudonymize_chat_id,
    pseudonymize_id,
    safe_log_action,
    seal_value,
    unseal_value,
)
from app.security.data_protection import SEALED_PREFIX


class TestPseudonymization:
    def test_stable_and_context_dependent(self):
        assert pseudonymize_id(42) == pseudonymize_id(42)
        assert pseudonymize_id(42) != pseudonymize_chat_id(42)
        assert pseudonymize_id(42).startswith("u_")

    def test_log_line_hides_ids_and_usernames(self):
        line = safe_log_action("ban", 123456, -100500, reason="спам от @shop", success=False)

        assert "123456" not in line
        assert "@shop" not in line
        assert "status=failed" in line


class TestSealing:
    def test_sealed_answer_is_not_plaintext(self):
        sealed = seal_value("7K3P")

        assert sealed.startswith(SEALED_PREFIX)
        assert "7K3P" not in sealed
        assert unseal_value(sealed) == "7K3P"

    def test_plain_values_pass_through(self):
        assert unseal_value("plain") == "plain"
        assert unseal_value(None) is None

    def test_foreign_token_is_rejected(self):
        foreign = Fernet(generate_encryption_key().encode()).encrypt(b"x").decode()

        assert unseal_value(SEALED_PREFIX + foreign) is None
