"""Parsing of SACS result tables into registry candidates.

The registry renders one block per person: label rows
("NÚMERO DE CÉDULA:", "NOMBRE Y APELLIDO:") followed by registration rows of
at least six cells (profession, license number, date, volume, folio,
postgraduate button). Expanded postgraduate tables add rows containing
"ESPECIALISTA EN ...". All fields are best-effort text.
"""

import unicodedata

from app.schemas.credentials import ProfessionalRegistration, RegistryCandidate

MIN_NAME_LENGTH = 6
MIN_PROFESSION_LENGTH = 4
REGISTRATION_CELLS = 6

_DOCUMENT_LABELS = {"NUMERO DE CEDULA", "CEDULA"}
_NAME_LABELS = {"NOMBRE Y APELLIDO", "NOMBRES Y APELLIDOS", "NOMBRE"}
_STATUS_LABELS = {"ESTADO", "ESTATUS", "STATUS", "CONDICION"}
_HEADER_PROFESSIONS = {"PROFESION", "PROFESION U OFICIO"}


def _collapse(value: str | None) -> str:
    return " ".join((value or "").split())


def _label_key(cell: str) -> str:
    """Upper-case, accent-free label without trailing colon."""
    decomposed = unicodedata.normalize("NFKD", cell)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return stripped.upper().rstrip(": ").strip()


def _has_specialist_text(cell: str) -> bool:
    return "ESPECIALISTA EN" in _label_key(cell)


def _append_specialty(candidate: RegistryCandidate, text: str) -> None:
    lines = candidate.specialty_text.splitlines() if candidate.specialty_text else []
    if text not in lines:
        lines.append(text)
    candidate.specialty_text = "\n".join(lines)


def _parse_registration(cells: list[str]) -> ProfessionalRegistration | None:
    profession = cells[0]
    if len(profession) < MIN_PROFESSION_LENGTH or _label_key(profession) in _HEADER_PROFESSIONS:
        return None
    return ProfessionalRegistration(
        profession=profession,
        license_number=cells[1] or None,
        registration_date=cells[2] or None,
        volume=cells[3] or None,
        folio=cells[4] or None,
        has_postgraduate="POSTGRADO" in _label_key(cells[5]),
    )


def parse_registry_rows(rows: list[list[str]]) -> list[RegistryCandidate]:
    """
    Convert raw table rows (cell texts) into candidate profiles.

    Args:
        rows: Cell texts of every ``table tr`` on the results page

    Returns:
        One candidate per person block, in page order
    """
    candidates: list[RegistryCandidate] = []
    current: RegistryCandidate | None = None

    def ensure_current() -> RegistryCandidate:
        nonlocal current
        if current is None:
            current = RegistryCandidate()
            candidates.append(current)
        return current

    for raw_cells in rows:
        cells = [_collapse(cell) for cell in raw_cells]
        if not any(cells):
            continue

        label = _label_key(cells[0])
        value = cells[1] if len(cells) > 1 else ""

        if label in _DOCUMENT_LABELS:
            if value:
                current = RegistryCandidate(document_number=value)
                candidates.append(current)
            continue

        if label in _NAME_LABELS:
            if len(value) >= MIN_NAME_LENGTH:
                candidate = ensure_current()
                if candidate.full_name and candidate.full_name != value:
                    current = RegistryCandidate(full_name=value)
                    candidates.append(current)
                else:
                    candidate.full_name = value
            continue

        if label in _STATUS_LABELS:
            if value:
                ensure_current().license_status = value
            continue

        if len(cells) >= REGISTRATION_CELLS:
            registration = _parse_registration(cells)
            if registration is not None:
                candidate = ensure_current()
                candidate.registrations.append(registration)
                if _has_specialist_text(registration.profession):
                    _append_specialty(candidate, registration.profession)
                elif candidate.profession is None:
                    candidate.profession = registration.profession
                    candidate.license_number = registration.license_number
                continue

        specialist_cells = [cell for cell in cells if _has_specialist_text(cell)]
        if specialist_cells and current is not None:
            _append_specialty(current, " | ".join(specialist_cells))

    return [c for c in candidates if c.document_number or c.full_name]
