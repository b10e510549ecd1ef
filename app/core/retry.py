"""Module de retry avec backoff exponentiel pour opérations asynchrones.

Utilisé aux frontières des collaborateurs externes (registre SACS via
navigateur headless) pour absorber les erreurs transitoires: timeouts de
navigation, connexions perdues. Les erreurs terminales ne doivent pas
figurer dans le tuple ``exceptions``.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry_attempt(retry_state: RetryCallState) -> None:
    """
    Logger les tentatives de retry pour observabilité.

    Args:
        retry_state: État de la tentative de retry
    """
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    name = getattr(retry_state.fn, "__name__", "operation") if retry_state.fn else "operation"
    logger.warning(
        f"Retry attempt {retry_state.attempt_number} after "
        f"{retry_state.seconds_since_start:.2f}s for {name} - Exception: {exception}"
    )


async def retry_async_operation(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    min_wait_seconds: float = 1,
    max_wait_seconds: float = 10,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """
    Exécute une opération async avec retry et backoff exponentiel.

    Args:
        operation: Fonction async à exécuter
        *args: Arguments positionnels pour operation
        max_attempts: Nombre maximum de tentatives (première tentative incluse)
        min_wait_seconds: Attente minimale entre tentatives (secondes)
        max_wait_seconds: Attente maximale entre tentatives (secondes)
        exceptions: Tuple des exceptions qui déclenchent un retry
        **kwargs: Arguments keyword pour operation

    Returns:
        Résultat de l'opération

    Raises:
        Exception: La dernière exception levée si toutes les tentatives échouent

    Example:
        ```python
        candidates = await retry_async_operation(
            searcher.search,
            "13266929",
            max_attempts=3,
            exceptions=(RegistryTimeoutError, RegistryNavigationError),
        )
        ```
    """
    attempt = 0

    async for attempt_state in AsyncRetrying(
        retry=retry_if_exception_type(exceptions),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(min=min_wait_seconds, max=max_wait_seconds),
        before_sleep=_log_retry_attempt,
        reraise=True,
    ):
        with attempt_state:
            attempt += 1
            if attempt > 1:
                name = getattr(operation, "__name__", "operation")
                logger.info(f"Retry attempt {attempt}/{max_attempts} for {name}")

            return await operation(*args, **kwargs)

    # Ce code n'est jamais atteint (reraise=True lève l'exception)
    # mais est nécessaire pour la vérification de type
    raise RetryError("Max retries exceeded")
