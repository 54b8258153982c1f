"""
Tests for signature, hashing and storage key helpers.
"""

import hashlib
import hmac
import re
from datetime import datetime, timezone

from guestgallery.utils import (
    build_storage_key,
    extension_for_mime,
    format_window_time,
    sha256_hex,
    verify_hub_signature,
)

SECRET = "app-secret"
BODY = b'{"object":"whatsapp_business_account","entry":[]}'


def sign(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class TestHubSignature:

    def test_valid(self):
        assert verify_hub_signature(BODY, sign(BODY, SECRET), SECRET)

    def test_wrong_secret(self):
        assert not verify_hub_signature(BODY, sign(BODY, "other"), SECRET)

    def test_different_body(self):
        assert not verify_hub_signature(BODY + b" ", sign(BODY, SECRET), SECRET)

    def test_missing_or_unprefixed(self):
        assert not verify_hub_signature(BODY, None, SECRET)
        assert not verify_hub_signature(BODY, "", SECRET)
        assert not verify_hub_signature(BODY, sign(BODY, SECRET)[len("sha256="):], SECRET)

    def test_non_ascii_header_is_rejected(self):
        assert not verify_hub_signature(BODY, "sha256=\u00e9", SECRET)
        assert not verify_hub_signature(BODY, "sha256=" + "\u00e9" * 64, SECRET)


class TestStorageKeys:

    def test_known_extensions(self):
        assert extension_for_mime("image/jpeg") == "jpg"
        assert extension_for_mime("image/png") == "png"
        assert extension_for_mime("video/quicktime") == "mov"
        assert extension_for_mime("video/mp4") == "mp4"
        assert extension_for_mime("IMAGE/JPEG; charset=binary") == "jpg"

    def test_falls_back_to_subtype(self):
        assert extension_for_mime("image/avif") == "avif"
        assert extension_for_mime("image/svg+xml") == "svg"

    def test_falls_back_to_bin(self):
        assert extension_for_mime(None) == "bin"
        assert extension_for_mime("") == "bin"
        assert extension_for_mime("garbage") == "bin"
        assert extension_for_mime("image/") == "bin"

    def test_key_format(self):
        key = build_storage_key("wedding-ana-ivan", "ceremony", "image/jpeg")
        assert re.fullmatch(r"event/wedding-ana-ivan/ceremony/[0-9a-f-]{36}\.jpg", key)

    def test_keys_are_random(self):
        assert build_storage_key("e", "a", "image/png") != build_storage_key("e", "a", "image/png")


class TestMisc:

    def test_sha256_hex(self):
        assert sha256_hex(b"abc") == hashlib.sha256(b"abc").hexdigest()

    def test_format_window_time(self):
        assert format_window_time(None) == "N/A"
        assert format_window_time(datetime(2026, 6, 1, 18, 30, tzinfo=timezone.utc)) == "2026-06-01 18:30 UTC"
        assert format_window_time(datetime(2026, 6, 1, 18, 30)) == "2026-06-01 18:30 UTC"
