"""Extraction heuristique des spécialités depuis le texte libre du registre SACS.

Le registre peut lister plusieurs spécialités pour une même cédula, ou
aucune (médecine générale). L'analyse découpe le texte en lignes et en
cellules, reconnaît les libellés "ESPECIALISTA EN ..." où qu'ils soient et
les libellés simples placés sous un en-tête de section (ESPECIALIDADES:,
POSTGRADOS:). Le résultat est toujours une liste, éventuellement vide.
"""

import logging
import re
import unicodedata

from app.schemas.credentials import SpecialtyAnalysis, SpecialtyOutcome

logger = logging.getLogger(__name__)

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")
_CELL_SPLIT = re.compile(r"[|;\t]")
_SECTION_HEADER = re.compile(
    r"^(?:ESPECIALIDAD(?:ES)?|POSTGRADOS?|ESPECIALIZACI[OÓ]N(?:ES)?)\s*(?::\s*(.*))?$"
)
_OTHER_HEADER = re.compile(r"^[A-ZÁÉÍÓÚÑÜ][A-ZÁÉÍÓÚÑÜ ]{2,40}:")
_SPECIALIST_HEADER = r"ESPECIALI(?:STA|DAD)\s+EN\s"
# Un libellé s'arrête au prochain en-tête, même collé (textContent des tableaux imbriqués)
_SPECIALIST = re.compile(rf"{_SPECIALIST_HEADER}\s*(.+?)(?=\s*{_SPECIALIST_HEADER}|$)")
_PLAIN_LABEL = re.compile(r"[A-ZÁÉÍÓÚÑÜ][A-ZÁÉÍÓÚÑÜ .()\-]{3,}")
_TRAILING_NOISE = re.compile(r"[\s\d.,:;\-/]+$")
_SPECIALIST_PREFIX = "ESPECIALISTA EN"


def _collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


def _clean_label(value: str) -> str:
    return _collapse_whitespace(_TRAILING_NOISE.sub("", value))


def _dedupe_key(label: str) -> str:
    decomposed = unicodedata.normalize("NFKD", label)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold()


class SpecialtyTextAnalyzer:
    """
    Analyseur de spécialités tolérant aux pannes.

    ``analyze`` ne lève jamais: une erreur d'analyse produit un résultat vide
    avec ``parse_failed=True`` et un diagnostic.
    """

    def analyze(self, text: str | None) -> SpecialtyAnalysis:
        """
        Extrait zéro, une ou plusieurs spécialités normalisées.

        Args:
            text: Texte libre extrait d'une page de profil

        Returns:
            SpecialtyAnalysis avec l'issue explicite (none, single, multiple)
        """
        if text is None:
            return SpecialtyAnalysis(diagnostic="no registry text")

        try:
            specialties = self._extract(text)
        except Exception as e:
            logger.warning(f"Analyse des spécialités impossible: {e}", exc_info=True)
            return SpecialtyAnalysis(parse_failed=True, diagnostic=f"parse error: {e}")

        if not specialties:
            return SpecialtyAnalysis(diagnostic="no specialty section found")

        outcome = SpecialtyOutcome.SINGLE if len(specialties) == 1 else SpecialtyOutcome.MULTIPLE
        return SpecialtyAnalysis(specialties=specialties, outcome=outcome)

    def _extract(self, text: str) -> list[str]:
        if not isinstance(text, str):
            raise TypeError(f"expected text, got {type(text).__name__}")

        normalized = unicodedata.normalize("NFC", text).upper()
        specialties: list[str] = []
        seen: set[str] = set()
        in_section = False

        for line in _LINE_SPLIT.split(normalized):
            cells = [_collapse_whitespace(cell) for cell in _CELL_SPLIT.split(line)]
            cells = [cell for cell in cells if cell]
            if not cells:
                in_section = False
                continue

            header = _SECTION_HEADER.match(cells[0])
            if header:
                in_section = True
                cells[0] = (header.group(1) or "").strip()
            elif _OTHER_HEADER.match(cells[0]):
                in_section = False

            for index, cell in enumerate(cells):
                labels = self._labels_from_cell(cell, first_cell=index == 0, in_section=in_section)
                for label in labels:
                    key = _dedupe_key(label)
                    if key not in seen:
                        seen.add(key)
                        specialties.append(label)

        return specialties

    @staticmethod
    def _labels_from_cell(cell: str, *, first_cell: bool, in_section: bool) -> list[str]:
        names = [_clean_label(match.group(1)) for match in _SPECIALIST.finditer(cell)]
        if names:
            return [f"{_SPECIALIST_PREFIX} {name}" for name in names if name]

        # Hors "ESPECIALISTA EN", seule la première cellule d'une ligne de section compte
        if in_section and first_cell and _PLAIN_LABEL.fullmatch(cell):
            label = _clean_label(cell)
            return [label] if label else []

        return []


def extract_specialties(text: str | None) -> list[str]:
    """Raccourci: liste des spécialités extraites d'un texte."""
    return SpecialtyTextAnalyzer().analyze(text).specialties
