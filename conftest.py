"""
Configuration pytest.

Les collaborateurs externes (registre SACS via navigateur, fournisseur
biométrique Didit) sont remplacés par des doublures dans les tests: aucun
test n'accède au réseau ni ne lance de navigateur.

Usage:
    pytest
"""

import os

import pytest

# Variables d'environnement pour les tests
# Respecte les variables déjà définies (ex: dans GitHub Actions)
TEST_ENV = {
    "ENVIRONMENT": os.getenv("ENVIRONMENT", "development"),
    "DEBUG": os.getenv("DEBUG", "false"),
    # Webhook fournisseur (test mode)
    "DIDIT_WEBHOOK_SECRET": os.getenv("DIDIT_WEBHOOK_SECRET", "test-webhook-secret"),
    "DIDIT_API_KEY": os.getenv("DIDIT_API_KEY", "test-api-key"),
    "DIDIT_WORKFLOW_ID": os.getenv("DIDIT_WORKFLOW_ID", "test-workflow"),
    # OpenTelemetry (test mode)
    "OTEL_SDK_DISABLED": os.getenv("OTEL_SDK_DISABLED", "true"),
    "OTEL_SERVICE_NAME": os.getenv("OTEL_SERVICE_NAME", "core-credential-verification-test"),
}

# Appliquer les variables d'environnement de test (ne remplace pas si déjà définies)
for key, value in TEST_ENV.items():
    if key not in os.environ:
        os.environ[key] = value


@pytest.fixture
def test_env():
    """Fournit les variables d'environnement de test."""
    return TEST_ENV.copy()
