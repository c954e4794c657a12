"""
Voice webhook signature checks and phone normalization.
"""

import base64
import hashlib
import hmac

import pytest

from booking_engine.utils.phone import normalize_phone
from booking_engine.utils.signature import (
    parse_signature_header,
    read_signature,
    verify_hmac_signature,
)

SECRET = "voice-secret"
BODY = b'{"orgId":"org-akl"}'
NOW = 1_800_000_000


def digest() -> bytes:
    return hmac.new(SECRET.encode(), BODY, hashlib.sha256).digest()


@pytest.mark.unit
class TestVerifySignature:
    """Accepted header shapes"""

    def test_hex_digest(self):
        assert verify_hmac_signature(BODY, digest().hex(), SECRET)

    def test_base64_digest(self):
        assert verify_hmac_signature(BODY, base64.b64encode(digest()).decode(), SECRET)

    def test_timestamped_header(self):
        header = f"t={NOW},v1={digest().hex()}"
        assert verify_hmac_signature(BODY, header, SECRET, now=NOW + 10)

    def test_any_of_several_signatures(self):
        header = f"t={NOW},v1=deadbeef,v1={digest().hex()}"
        assert verify_hmac_signature(BODY, header, SECRET, now=NOW)

    def test_stale_timestamp_is_rejected(self):
        header = f"t={NOW},v1={digest().hex()}"
        assert not verify_hmac_signature(BODY, header, SECRET, now=NOW + 301)

    def test_timestamp_from_separate_header(self):
        assert not verify_hmac_signature(BODY, digest().hex(), SECRET, timestamp_header=str(NOW), now=NOW + 3600)

    def test_wrong_secret(self):
        assert not verify_hmac_signature(BODY, digest().hex(), "other-secret")

    def test_tampered_body(self):
        assert not verify_hmac_signature(BODY + b" ", digest().hex(), SECRET)

    def test_missing_header_or_secret(self):
        assert not verify_hmac_signature(BODY, None, SECRET)
        assert not verify_hmac_signature(BODY, digest().hex(), None)


@pytest.mark.unit
class TestParseHeader:
    """Header splitting"""

    def test_plain_value(self):
        assert parse_signature_header("abc123") == (["abc123"], None)

    def test_base64_padding_survives(self):
        assert parse_signature_header("YWJj==") == (["YWJj=="], None)

    def test_keyed_values(self):
        assert parse_signature_header("t=17, v1=aa, sig=bb") == (["aa", "bb"], "17")

    def test_read_signature_prefers_first_known_header(self):
        headers = {"x-voice-signature": "one", "signature": "two", "x-retell-timestamp": "5"}
        assert read_signature(headers) == ("one", "5")


@pytest.mark.unit
class TestNormalizePhone:
    """E.164 normalization"""

    @pytest.mark.parametrize("raw", ["021 555 0199", "+64 21 555 0199", "(021) 555-0199"])
    def test_nz_local_numbers(self, raw):
        assert normalize_phone(raw) == "+64215550199"

    def test_region_controls_local_parsing(self):
        assert normalize_phone("416-555-1234", region="CA") == "+14165551234"

    def test_international_number_ignores_region(self):
        assert normalize_phone("+1 416 555 1234") == "+14165551234"

    @pytest.mark.parametrize("raw", ["", "   ", None, "12", "call me"])
    def test_unusable_input_raises(self, raw):
        with pytest.raises(ValueError):
            normalize_phone(raw)
