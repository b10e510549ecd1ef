"""Tests unitaires pour la vérification de signature webhook."""

import time
from unittest.mock import patch

import pytest
from fastapi import HTTPException

from app.core.webhook_security import (
    compute_signature,
    generate_test_signature,
    verify_signature,
    verify_webhook_request,
)

SECRET = "test-secret"
BODY = b'{"session_id":"sess-1","status":"Approved"}'


def now() -> str:
    return str(int(time.time()))


class MockRequest:
    """Requête factice exposant headers et body async."""

    def __init__(self, headers: dict[str, str], payload: bytes):
        self.headers = headers
        self._payload = payload

    async def body(self):
        return self._payload


class TestComputeSignature:
    """Tests pour le calcul de signature HMAC-SHA256."""

    PAYLOAD = b'{"session_id":"sess-1","status":"Approved"}'

    def test_body_signature_known_vector(self):
        """Test HMAC-SHA256 hexadécimal du corps brut."""
        assert compute_signature(self.PAYLOAD, "test-secret") == (
            "e940a738befdf5de6ae365b29453471929bc89bde7c63f94898b3df3e1061068"
        )

    def test_timestamped_signature_known_vector(self):
        """Test forme signée ``timestamp.body``."""
        assert compute_signature(self.PAYLOAD, "test-secret", "1760781600") == (
            "e6c5593e2290a2069e11d647de06fb2a2f68a102429f1048d670756b46ebd4a3"
        )

    def test_secret_changes_signature(self):
        """Test qu'un autre secret produit une autre signature."""
        assert compute_signature(self.PAYLOAD, "secret-a") != compute_signature(
            self.PAYLOAD, "secret-b"
        )


class TestVerifySignature:
    """Tests pour verify_signature."""

    @pytest.mark.parametrize(
        "sign",
        [
            lambda ts: compute_signature(BODY, SECRET),
            lambda ts: compute_signature(BODY, SECRET, ts),
            lambda ts: "sha256=" + compute_signature(BODY, SECRET).upper(),
            lambda ts: f"  {compute_signature(BODY, SECRET, ts)}\n",
        ],
        ids=["body", "timestamp-dot-body", "sha256-prefix-uppercase", "surrounding-whitespace"],
    )
    def test_accepted_signature_forms(self, sign):
        """Test des formes de signature acceptées."""
        timestamp = now()

        result = verify_signature(BODY, sign(timestamp), timestamp, secret=SECRET)

        assert result.verified is True
        assert result.reason is None

    def test_default_secret_comes_from_settings(self):
        """Test secret par défaut lu dans la configuration."""
        timestamp = now()
        signature = compute_signature(BODY, "rotated-secret")

        with patch("app.core.config.settings.DIDIT_WEBHOOK_SECRET", "rotated-secret"):
            assert verify_signature(BODY, signature, timestamp).verified is True
        assert verify_signature(BODY, signature, timestamp).verified is False

    def test_tampered_body(self):
        """Test statut modifié après signature."""
        signature = compute_signature(b'{"session_id":"sess-1","status":"Declined"}', SECRET)

        result = verify_signature(BODY, signature, now(), secret=SECRET)

        assert result.verified is False
        assert result.reason == "Signature invalide"

    def test_last_character_differs(self):
        """Test signature presque correcte."""
        correct = compute_signature(BODY, SECRET)
        near_miss = correct[:-1] + ("0" if correct[-1] != "0" else "1")

        assert verify_signature(BODY, near_miss, now(), secret=SECRET).verified is False

    @pytest.mark.parametrize(
        ("offset", "reason"),
        [(-400, "Webhook expiré (>300s)"), (400, "Timestamp dans le futur")],
    )
    def test_timestamp_outside_window(self, offset, reason):
        """Test fenêtre de tolérance dans les deux sens."""
        timestamp = str(int(time.time()) + offset)
        signature = compute_signature(BODY, SECRET, timestamp)

        result = verify_signature(BODY, signature, timestamp, secret=SECRET, tolerance=300)

        assert result.verified is False
        assert result.reason == reason

    def test_timestamp_inside_window(self):
        """Test horloge du fournisseur légèrement décalée."""
        timestamp = str(int(time.time()) - 120)
        signature = compute_signature(BODY, SECRET)

        assert verify_signature(BODY, signature, timestamp, secret=SECRET).verified is True

    def test_non_numeric_timestamp(self):
        """Test timestamp non numérique."""
        result = verify_signature(BODY, "abc", "yesterday", secret=SECRET)

        assert result.verified is False
        assert result.reason == "Timestamp invalide: yesterday"


class TestGenerateTestSignature:
    """Tests pour generate_test_signature."""

    def test_generated_signature_verifies(self):
        """Test qu'une signature générée est acceptée."""
        signature, timestamp = generate_test_signature(BODY.decode(), secret=SECRET)
        result = verify_signature(BODY, signature, timestamp, secret=SECRET)

        assert result.verified is True


class TestVerifyWebhookRequest:
    """Tests pour verify_webhook_request (dépendance FastAPI)."""

    @pytest.mark.asyncio
    async def test_valid_request(self):
        """Test requête signée avec le secret configuré."""
        timestamp = now()
        signature = compute_signature(BODY, SECRET)
        request = MockRequest({"X-Signature": signature, "X-Timestamp": timestamp}, BODY)

        with patch("app.core.config.settings.DIDIT_WEBHOOK_SECRET", SECRET):
            result = await verify_webhook_request(request)

        assert result.signature == signature
        assert result.timestamp == timestamp

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("headers", "missing"),
        [
            ({"X-Timestamp": "1760781600"}, "X-Signature"),
            ({"X-Signature": "abc"}, "X-Timestamp"),
            ({"X-Signature": "", "X-Timestamp": "1760781600"}, "X-Signature"),
        ],
    )
    async def test_missing_header(self, headers, missing):
        """Test header absent ou vide: 400."""
        with pytest.raises(HTTPException) as exc_info:
            await verify_webhook_request(MockRequest(headers, BODY))

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == f"Missing {missing} header"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("signature", "timestamp"),
        [
            ("not-a-signature", None),
            (compute_signature(BODY, SECRET), "1000000000"),
        ],
        ids=["bad-signature", "stale-timestamp"],
    )
    async def test_rejected_request(self, signature, timestamp):
        """Test signature ou horodatage rejetés: 401."""
        headers = {"X-Signature": signature, "X-Timestamp": timestamp or now()}

        with patch("app.core.config.settings.DIDIT_WEBHOOK_SECRET", SECRET):
            with pytest.raises(HTTPException) as exc_info:
                await verify_webhook_request(MockRequest(headers, BODY))

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail.startswith("Invalid webhook signature: ")
