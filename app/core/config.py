import json
from typing import Literal, TypeAlias

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings

# Listes lues depuis l'environnement (CORS, hôtes de confiance)
ConfigurableList: TypeAlias = str | list[str] | list[AnyHttpUrl]


def parse_list_from_env(value: ConfigurableList, field_name: str = "field") -> list[str]:
    """
    Convertit une variable d'environnement en liste de chaînes.

    Accepte une liste déjà construite, un tableau JSON ('["a", "b"]') ou une
    chaîne séparée par des virgules ("a,b"). Les éléments vides sont ignorés.

    Raises:
        ValueError: Si le tableau JSON est mal formé ou si le type n'est pas supporté
    """
    if isinstance(value, list):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Valeur invalide pour {field_name}: {value}")

    raw = value.strip()
    if raw.startswith("[") and raw.endswith("]"):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Format JSON invalide pour {field_name}: {raw}") from e
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    PROJECT_NAME: str = "core-credential-verification"
    VERSION: str = "0.1.0"
    DESCRIPTION: str = (
        "Vérification des documents, du registre professionnel SACS "
        "et de l'identité biométrique des professionnels de santé"
    )
    API_LATEST_VERSION: str = "v1"

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # Callbacks signés du fournisseur biométrique
    DIDIT_WEBHOOK_SECRET: str
    WEBHOOK_SIGNATURE_TOLERANCE: int = 300  # secondes, dans les deux sens

    # Sessions de vérification biométrique
    # Intervalle de polling indépendant du timeout de navigation du registre
    SESSION_POLL_INTERVAL_SECONDS: float = 5.0
    SESSION_MAX_AGE_SECONDS: int = 1800
    SESSION_MAX_POLL_FAILURES: int = 3
    SESSION_ARCHIVE_SIZE: int = 1000

    # Comparaison du nom déclaré avec le registre
    NAME_MATCH_THRESHOLD: float = 0.8

    # OpenTelemetry: les autres variables OTEL_* sont lues directement par la distro
    OTEL_SERVICE_NAME: str = "core-credential-verification"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None

    # Ex: ALLOWED_ORIGINS='["https://portal.example.org"]' ou "https://a.org,https://b.org"
    ALLOWED_ORIGINS: ConfigurableList = []
    TRUSTED_HOSTS: ConfigurableList = ["localhost", "127.0.0.1"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: ConfigurableList) -> list[str]:
        return parse_list_from_env(v, "ALLOWED_ORIGINS")

    @field_validator("TRUSTED_HOSTS", mode="before")
    @classmethod
    def assemble_trusted_hosts(cls, v: ConfigurableList) -> list[str]:
        return parse_list_from_env(v, "TRUSTED_HOSTS")

    def get_api_prefix(self, version: str | None = None) -> str:
        """Préfixe d'URL d'une version d'API (par défaut la plus récente)."""
        return f"/api/{version or self.API_LATEST_VERSION}"

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "ignore"


settings = Settings()
