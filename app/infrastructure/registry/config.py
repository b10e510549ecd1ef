"""Configuration for the SACS professional registry browser automation."""

from pydantic_settings import BaseSettings


class RegistrySettings(BaseSettings):
    """Registry scraping configuration settings.

    Navigation timeouts are expressed in milliseconds (Playwright convention)
    and are independent from the biometric session polling interval.
    """

    REGISTRY_URL: str = "https://sistemas.sacs.gob.ve/consultas/prfsnal_salud"
    REGISTRY_SEARCH_FUNCTION: str = "xajax_getPrfsnalByCed"
    REGISTRY_NAVIGATION_TIMEOUT_MS: int = 30000
    REGISTRY_RESULT_TIMEOUT_MS: int = 20000
    REGISTRY_POSTGRADUATE_TIMEOUT_MS: int = 5000
    REGISTRY_POOL_SIZE: int = 2
    REGISTRY_RETRY_ATTEMPTS: int = 2
    REGISTRY_RETRY_MIN_WAIT: float = 1.0
    REGISTRY_RETRY_MAX_WAIT: float = 8.0
    REGISTRY_HEADLESS: bool = True
    REGISTRY_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    REGISTRY_BROWSER_ARGS: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ]
    REGISTRY_BLOCKED_RESOURCES: list[str] = ["image", "font", "media"]

    model_config = {
        "env_prefix": "",
        "case_sensitive": True,
    }


registry_settings = RegistrySettings()
