"""
Security tests for the identifier cookie and log redaction

Covers signed and encrypted cookie codecs (tampering, wrong keys, expiry)
and checks that session ids and cookie values stay out of structured logs.
"""

import json
import logging
import time
from unittest.mock import patch

import pytest

from reqsession.core.config import SessionSettings
from reqsession.core.cookies import EncryptedCookieCodec, SignedCookieCodec, create_cookie_codec
from reqsession.core.errors import CookieError
from reqsession.core.security import new_session_id
from reqsession.core.utils.logging_config import StructuredFormatter, log_cookie_rejected

# Mark all tests in this module as security tests
pytestmark = pytest.mark.security

TEST_SECRET_KEY = "test-secret-key-for-reqsession-0123456789-abcdef"
OTHER_SECRET_KEY = "another-secret-key-for-reqsession-9876543210-zyxwv"


@pytest.fixture
def session_id() -> str:
    return new_session_id()


class TestSignedCookieCodec:
    """Test the timestamp-signed identifier cookie"""

    def test_round_trip(self, session_id):
        codec = SignedCookieCodec(TEST_SECRET_KEY, max_age=60)
        assert codec.decode(codec.encode(session_id)) == session_id

    def test_tampered_value_rejected(self, session_id):
        codec = SignedCookieCodec(TEST_SECRET_KEY)
        cookie = codec.encode(session_id)
        tampered = ("X" if cookie[0] != "X" else "Y") + cookie[1:]

        with pytest.raises(CookieError):
            codec.decode(tampered)

    def test_wrong_secret_rejected(self, session_id):
        cookie = SignedCookieCodec(TEST_SECRET_KEY).encode(session_id)

        with pytest.raises(CookieError):
            SignedCookieCodec(OTHER_SECRET_KEY).decode(cookie)

    def test_different_salt_rejected(self, session_id):
        cookie = SignedCookieCodec(TEST_SECRET_KEY, salt="one").encode(session_id)

        with pytest.raises(CookieError):
            SignedCookieCodec(TEST_SECRET_KEY, salt="two").decode(cookie)

    def test_expired_signature_rejected(self, session_id):
        codec = SignedCookieCodec(TEST_SECRET_KEY, max_age=60)
        with patch.object(codec.signer, "get_timestamp", return_value=int(time.time()) - 3600):
            cookie = codec.encode(session_id)

        with pytest.raises(CookieError, match="expired"):
            codec.decode(cookie)

    def test_garbage_rejected(self):
        codec = SignedCookieCodec(TEST_SECRET_KEY)

        for value in ["", "not-a-cookie", "a.b.c", "中文测试"]:
            with pytest.raises(CookieError):
                codec.decode(value)

    def test_signed_value_with_bad_id_shape_rejected(self):
        codec = SignedCookieCodec(TEST_SECRET_KEY)
        # Correctly signed, but not something we would ever mint
        cookie = codec.encode("short")

        with pytest.raises(CookieError):
            codec.decode(cookie)


class TestEncryptedCookieCodec:
    """Test the Fernet-encrypted identifier cookie"""

    @pytest.fixture
    def codec(self):
        return EncryptedCookieCodec(TEST_SECRET_KEY, max_age=60, kdf_iterations=1000)

    def test_round_trip(self, codec, session_id):
        assert codec.decode(codec.encode(session_id)) == session_id

    def test_session_id_not_visible_in_cookie(self, codec, session_id):
        cookie = codec.encode(session_id)
        assert session_id not in cookie

    def test_encryption_is_randomized(self, codec, session_id):
        assert codec.encode(session_id) != codec.encode(session_id)

    def test_wrong_secret_rejected(self, codec, session_id):
        other = EncryptedCookieCodec(OTHER_SECRET_KEY, max_age=60, kdf_iterations=1000)

        with pytest.raises(CookieError):
            other.decode(codec.encode(session_id))

    def test_expired_token_rejected(self, codec, session_id):
        cookie = codec.cipher.encrypt_at_time(
            session_id.encode("utf-8"), int(time.time()) - 3600
        ).decode("utf-8")

        with pytest.raises(CookieError):
            codec.decode(cookie)

    def test_signed_cookie_not_accepted(self, codec, session_id):
        signed = SignedCookieCodec(TEST_SECRET_KEY).encode(session_id)

        with pytest.raises(CookieError):
            codec.decode(signed)


class TestCookieCodecFactory:
    """Test codec selection from settings"""

    def test_signed_by_default(self, session_settings):
        codec = create_cookie_codec(session_settings)

        assert isinstance(codec, SignedCookieCodec)
        assert codec.max_age == session_settings.max_age

    def test_encrypted_when_enabled(self, session_settings):
        settings = session_settings.model_copy(update={"encrypt_cookie": True})
        codec = create_cookie_codec(settings)

        assert isinstance(codec, EncryptedCookieCodec)

    def test_secret_key_file_used_when_no_key_configured(self, tmp_path, session_id):
        key_file = tmp_path / ".secret_key"
        settings = SessionSettings(_env_file=None, secret_key_file=str(key_file))

        first = create_cookie_codec(settings)
        second = create_cookie_codec(settings)

        assert key_file.exists()
        assert second.decode(first.encode(session_id)) == session_id


class TestLogRedaction:
    """Test that identifiers stay out of structured logs"""

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="reqsession.test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="session event",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_session_id_and_cookie_redacted(self, session_id):
        record = self._record(session_id=session_id, cookie_value="signed.cookie", path="/set")

        output = StructuredFormatter().format(record)
        entry = json.loads(output)

        assert session_id not in output
        assert entry["extra"]["session_id"] == "[REDACTED]"
        assert entry["extra"]["cookie_value"] == "[REDACTED]"
        assert entry["extra"]["path"] == "/set"

    def test_include_sensitive_keeps_values(self, session_id):
        record = self._record(session_id=session_id)

        entry = json.loads(StructuredFormatter(include_sensitive=True).format(record))
        assert entry["extra"]["session_id"] == session_id

    def test_non_ascii_message_kept_readable(self):
        record = self._record()
        record.msg = "中文测试"

        output = StructuredFormatter().format(record)
        assert "中文测试" in output

    def test_cookie_rejection_logged_as_security_event(self, caplog):
        with caplog.at_level(logging.WARNING, logger="security.events"):
            log_cookie_rejected("cookie signature mismatch", ip_address="10.0.0.1")

        records = [r for r in caplog.records if r.name == "security.events"]
        assert len(records) == 1
        assert records[0].event_type == "session_cookie_rejected"
        assert records[0].ip_address == "10.0.0.1"
        assert "signature mismatch" in records[0].getMessage()

    def test_tampered_request_cookie_is_logged(self, manager, make_request, session_settings, caplog):
        with caplog.at_level(logging.WARNING, logger="security.events"):
            manager.bind(make_request(cookies={session_settings.cookie_name: "forged"}))

        assert any(
            getattr(r, "event_type", None) == "session_cookie_rejected" for r in caplog.records
        )
