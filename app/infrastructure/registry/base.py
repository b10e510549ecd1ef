"""Narrow interface between the license lookup and the registry automation engine."""

from typing import Protocol, runtime_checkable

from app.schemas.credentials import RegistryCandidate


@runtime_checkable
class RegistrySearcher(Protocol):
    """Searches the professional registry by document number.

    Implementations return an empty list when the registry reports no match
    and raise ``RegistryTransientError`` subclasses for timeouts and
    navigation failures so callers can retry.
    """

    async def search(self, document_number: str) -> list[RegistryCandidate]: ...
