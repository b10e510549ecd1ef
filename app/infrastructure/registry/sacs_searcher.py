"""Playwright implementation of the SACS registry search.

The SACS page has no form action: searches go through the page's xajax
function, which injects the result tables into the DOM. The searcher waits
for either a results block or a not-found message, reads every table row,
expands postgraduate tables when a registration offers them, then reads the
rows again.
"""

import logging
import re

from opentelemetry import trace
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.infrastructure.registry.browser_pool import BrowserPagePool
from app.infrastructure.registry.config import RegistrySettings, registry_settings
from app.infrastructure.registry.exceptions import (
    RegistryNavigationError,
    RegistryParseError,
    RegistryTimeoutError,
)
from app.infrastructure.registry.parser import parse_registry_rows
from app.schemas.credentials import RegistryCandidate

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_RESULT_OUTCOME_JS = """
() => {
  const cells = Array.from(document.querySelectorAll('table td, table th'))
    .map(c => (c.textContent || '').trim().toUpperCase());
  if (cells.some(t => t.startsWith('NÚMERO DE CÉDULA') || t.startsWith('NUMERO DE CEDULA'))) {
    return 'results';
  }
  const body = (document.body && document.body.innerText || '').toUpperCase();
  if (body.includes('NO SE ENCONTR') || body.includes('NO EXISTE') || body.includes('NO REGISTRA')) {
    return 'not_found';
  }
  return false;
}
"""

_READ_ROWS_JS = """
() => Array.from(document.querySelectorAll('table tr')).map(
  row => Array.from(row.querySelectorAll('td, th')).map(c => (c.textContent || '').trim())
)
"""

_SPECIALIST_VISIBLE_JS = """
() => Array.from(document.querySelectorAll('table td'))
  .some(c => (c.textContent || '').toUpperCase().includes('ESPECIALISTA EN'))
"""

_POSTGRADUATE_BUTTONS = "table tr td:nth-child(6) button"


class PlaywrightRegistrySearcher:
    """Registry searcher backed by a shared browser page pool."""

    def __init__(self, pool: BrowserPagePool, settings: RegistrySettings | None = None):
        self._pool = pool
        self._settings = settings or registry_settings

    async def search(self, document_number: str) -> list[RegistryCandidate]:
        """Search the registry by document number.

        Args:
            document_number: Document number, with or without nationality prefix

        Returns:
            Candidates found on the results page (empty when not found)

        Raises:
            RegistryTimeoutError: If the page neither shows results nor not-found in time
            RegistryNavigationError: If the page or the search function is unavailable
            RegistryParseError: If result rows cannot be read
        """
        digits = re.sub(r"\D", "", document_number)

        with tracer.start_as_current_span("registry_search") as span:
            span.set_attribute("registry.url", self._settings.REGISTRY_URL)
            span.set_attribute("registry.document_length", len(digits))

            try:
                async with self._pool.page() as page:
                    rows = await self._run_search(page, digits)
            except PlaywrightTimeoutError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, "timeout"))
                raise RegistryTimeoutError(
                    digits, self._settings.REGISTRY_RESULT_TIMEOUT_MS
                ) from e
            except PlaywrightError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise RegistryNavigationError(
                    f"Registry navigation failed: {e}",
                    {"url": self._settings.REGISTRY_URL},
                ) from e

            if rows is None:
                span.add_event("Registry reported no match")
                return []

            try:
                candidates = parse_registry_rows(rows)
            except (TypeError, ValueError) as e:
                span.record_exception(e)
                raise RegistryParseError(f"Unreadable registry results: {e}") from e

            span.set_attribute("registry.candidates", len(candidates))
            logger.info(f"Registre SACS: {len(candidates)} candidat(s) pour la cédula recherchée")
            return candidates

    async def _run_search(self, page: Page, digits: str) -> list[list[str]] | None:
        await page.goto(
            self._settings.REGISTRY_URL,
            wait_until="domcontentloaded",
            timeout=self._settings.REGISTRY_NAVIGATION_TIMEOUT_MS,
        )

        search_function = self._settings.REGISTRY_SEARCH_FUNCTION
        await page.wait_for_function(
            f"() => typeof window['{search_function}'] === 'function'",
            timeout=self._settings.REGISTRY_NAVIGATION_TIMEOUT_MS,
        )
        await page.evaluate("([fn, cedula]) => window[fn](cedula)", [search_function, digits])

        outcome = await page.wait_for_function(
            _RESULT_OUTCOME_JS, timeout=self._settings.REGISTRY_RESULT_TIMEOUT_MS
        )
        if await outcome.json_value() == "not_found":
            return None

        rows = await page.evaluate(_READ_ROWS_JS)
        if await self._expand_postgraduates(page):
            rows = await page.evaluate(_READ_ROWS_JS)
        return rows

    async def _expand_postgraduates(self, page: Page) -> bool:
        buttons = page.locator(_POSTGRADUATE_BUTTONS)
        count = await buttons.count()
        for index in range(count):
            await buttons.nth(index).click()
            try:
                await page.wait_for_function(
                    _SPECIALIST_VISIBLE_JS,
                    timeout=self._settings.REGISTRY_POSTGRADUATE_TIMEOUT_MS,
                )
            except PlaywrightTimeoutError:
                logger.info("Aucune spécialité affichée après ouverture des postgrados")
        return count > 0
