"""Validation syntaxique et numérique des documents d'identité vénézuéliens.

Fonctions pures: aucune entrée invalide ne lève d'exception, les problèmes
sont rapportés dans ``errors`` (bloquants) ou ``warnings`` (non bloquants).

Algorithmes de chiffre de contrôle:
    - cédula d'identité: poids décroissants (nombre de chiffres - i) sur tous
      les chiffres sauf le dernier, somme % 10 comparée au dernier chiffre
    - cédula d'étranger: poids croissants (i + 1), 8 chiffres exactement
    - passeport: poids croissants (i + 1) sur les 7 chiffres, valide si
      somme % 10 == 0
    - autres documents: format seul
"""

import logging
import re
from collections.abc import Iterable
from datetime import date, datetime

from app.schemas.documents import (
    CheckDigitAlgorithm,
    Confidence,
    DocumentFormat,
    DocumentIdentifier,
    DocumentType,
    DocumentValidationRequest,
    DocumentValidationResult,
)

logger = logging.getLogger(__name__)

MIN_AGE = 0
MAX_AGE = 120

DOCUMENT_FORMATS: dict[DocumentType, DocumentFormat] = {
    DocumentType.NATIONAL_ID: DocumentFormat(
        document_type=DocumentType.NATIONAL_ID,
        pattern=r"^[VJEG]-\d{7,8}$",
        example="V-12345678",
        description="Cédula de identidad venezolana",
        issuing_authority="SAIME",
        check_digit_algorithm=CheckDigitAlgorithm.DESCENDING_WEIGHTS,
    ),
    DocumentType.FOREIGN_NATIONAL_ID: DocumentFormat(
        document_type=DocumentType.FOREIGN_NATIONAL_ID,
        pattern=r"^E-\d{7,8}$",
        example="E-12345678",
        description="Cédula de extranjería",
        issuing_authority="SAIME",
        check_digit_algorithm=CheckDigitAlgorithm.ASCENDING_WEIGHTS,
        expires=True,
    ),
    DocumentType.PASSPORT: DocumentFormat(
        document_type=DocumentType.PASSPORT,
        pattern=r"^VE\d{7}$",
        example="VE1234567",
        description="Pasaporte venezolano",
        issuing_authority="SAIME",
        check_digit_algorithm=CheckDigitAlgorithm.PASSPORT_SUM,
        expires=True,
    ),
    DocumentType.PROFESSIONAL_LICENSE: DocumentFormat(
        document_type=DocumentType.PROFESSIONAL_LICENSE,
        pattern=r"^[VJEG]-\d{7,8}$",
        example="V-12345678",
        description="Cédula profesional",
        issuing_authority="Colegio de Profesionales",
        check_digit_algorithm=CheckDigitAlgorithm.NONE,
    ),
    DocumentType.DRIVER_LICENSE: DocumentFormat(
        document_type=DocumentType.DRIVER_LICENSE,
        pattern=r"^LC\d{8}$",
        example="LC12345678",
        description="Licencia de conducir",
        issuing_authority="INTT",
        check_digit_algorithm=CheckDigitAlgorithm.NONE,
        expires=True,
    ),
    DocumentType.BIRTH_RECORD: DocumentFormat(
        document_type=DocumentType.BIRTH_RECORD,
        pattern=r"^PN\d{10}$",
        example="PN1234567890",
        description="Partida de nacimiento",
        issuing_authority="Registro Civil",
        check_digit_algorithm=CheckDigitAlgorithm.NONE,
    ),
    DocumentType.BIRTH_CERTIFICATE: DocumentFormat(
        document_type=DocumentType.BIRTH_CERTIFICATE,
        pattern=r"^CN\d{10}$",
        example="CN1234567890",
        description="Certificado de nacimiento",
        issuing_authority="Registro Civil",
        check_digit_algorithm=CheckDigitAlgorithm.NONE,
    ),
}

# Ordre significatif: "VE" avant la cédula "V-", "E-" avant le défaut
_PREFIX_INFERENCE: tuple[tuple[str, DocumentType], ...] = (
    ("VE", DocumentType.PASSPORT),
    ("E-", DocumentType.FOREIGN_NATIONAL_ID),
    ("LC", DocumentType.DRIVER_LICENSE),
    ("PN", DocumentType.BIRTH_RECORD),
    ("CN", DocumentType.BIRTH_CERTIFICATE),
)

_DIGITS = re.compile(r"\d+")


def normalize_document_number(raw_number: str) -> str:
    """Met en majuscules et supprime tous les espaces."""
    return "".join(raw_number.split()).upper()


def get_document_format(document_type: DocumentType) -> DocumentFormat:
    """Retourne la description de format d'un type de document."""
    return DOCUMENT_FORMATS[document_type]


def infer_document_type(normalized: str) -> DocumentType:
    """
    Déduit le type de document depuis les conventions de préfixe.

    Ne lève jamais: tout numéro sans préfixe connu est traité comme cédula
    d'identité.
    """
    for prefix, document_type in _PREFIX_INFERENCE:
        if normalized.startswith(prefix):
            return document_type
    return DocumentType.NATIONAL_ID


def _resolve_document_type(
    document_type: DocumentType | str | None,
) -> tuple[DocumentType | None, str | None]:
    """Convertit le type fourni; retourne (type, avertissement) pour un type inconnu."""
    if document_type is None or isinstance(document_type, DocumentType):
        return document_type, None
    try:
        return DocumentType(document_type.strip().lower()), None
    except ValueError:
        return (
            DocumentType.NATIONAL_ID,
            f"Unknown document type '{document_type}', "
            f"defaulted to {DocumentType.NATIONAL_ID.value}",
        )


def _extract_digits(normalized: str) -> str:
    return "".join(_DIGITS.findall(normalized))


def compute_check_digit(body: str, document_type: DocumentType) -> str | None:
    """
    Calcule le chiffre de contrôle attendu pour le corps d'un document.

    Args:
        body: Chiffres du document, chiffre de contrôle exclu
        document_type: Type de document

    Returns:
        Chiffre de contrôle, ou None si le type n'en définit pas
        (le passeport n'a pas de chiffre de contrôle terminal)
    """
    algorithm = DOCUMENT_FORMATS[document_type].check_digit_algorithm
    digits = [int(c) for c in body]

    if algorithm == CheckDigitAlgorithm.DESCENDING_WEIGHTS:
        digit_count = len(digits) + 1
        total = sum(d * (digit_count - i) for i, d in enumerate(digits))
        return str(total % 10)

    if algorithm == CheckDigitAlgorithm.ASCENDING_WEIGHTS:
        total = sum(d * (i + 1) for i, d in enumerate(digits))
        return str(total % 10)

    return None


def verify_check_digit(digits: str, document_type: DocumentType) -> bool:
    """
    Vérifie le chiffre de contrôle d'une suite de chiffres.

    Args:
        digits: Tous les chiffres du document (chiffre de contrôle inclus)
        document_type: Type de document

    Returns:
        True si le chiffre de contrôle est valide ou si le type n'en a pas
    """
    algorithm = DOCUMENT_FORMATS[document_type].check_digit_algorithm

    if algorithm == CheckDigitAlgorithm.NONE:
        return True

    if not digits.isdigit() or len(digits) < 2:
        return False

    if algorithm == CheckDigitAlgorithm.PASSPORT_SUM:
        if len(digits) != 7:
            return False
        total = sum(int(d) * (i + 1) for i, d in enumerate(digits))
        return total % 10 == 0

    if algorithm == CheckDigitAlgorithm.ASCENDING_WEIGHTS and len(digits) != 8:
        return False

    return compute_check_digit(digits[:-1], document_type) == digits[-1]


def calculate_age(birth_date: date, today: date | None = None) -> int:
    """Âge en années révolues (soustraction calendaire, pas seulement l'année)."""
    today = today or date.today()
    had_birthday = (today.month, today.day) >= (birth_date.month, birth_date.day)
    return today.year - birth_date.year - (0 if had_birthday else 1)


def _parse_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def compute_confidence(
    *,
    format_valid: bool,
    check_digit_valid: bool,
    errors: list[str],
    warnings: list[str],
    is_expired: bool,
    age: int | None,
) -> Confidence:
    """
    Calcule la confiance d'une validation.

    ``high`` si le chiffre de contrôle est valide, sans erreurs ni
    avertissements, non expiré et âge absent ou dans [0, 120]; ``medium`` si
    au moins 4 des 6 conditions positives sont remplies; ``low`` sinon.
    """
    age_in_range = age is None or MIN_AGE <= age <= MAX_AGE
    conditions = (
        format_valid,
        check_digit_valid,
        not errors,
        not warnings,
        not is_expired,
        age_in_range,
    )

    if check_digit_valid and not errors and not warnings and not is_expired and age_in_range:
        return Confidence.HIGH
    if sum(conditions) >= 4:
        return Confidence.MEDIUM
    return Confidence.LOW


def validate(
    raw_number: str,
    document_type: DocumentType | str | None = None,
    birth_date: date | datetime | str | None = None,
    *,
    expiration_date: date | datetime | str | None = None,
    today: date | None = None,
) -> DocumentValidationResult:
    """
    Valide un numéro de document.

    Args:
        raw_number: Numéro tel que saisi
        document_type: Type de document; déduit du préfixe si absent
        birth_date: Date de naissance optionnelle (calcul de l'âge)
        expiration_date: Date d'expiration optionnelle
        today: Date de référence (tests)

    Returns:
        DocumentValidationResult, jamais d'exception pour une entrée invalide
    """
    errors: list[str] = []
    warnings: list[str] = []
    today = today or date.today()

    normalized = normalize_document_number(raw_number) if isinstance(raw_number, str) else ""

    resolved_type, type_warning = _resolve_document_type(document_type)
    if type_warning:
        warnings.append(type_warning)

    type_inferred = resolved_type is None
    if resolved_type is None:
        resolved_type = infer_document_type(normalized)

    doc_format = DOCUMENT_FORMATS[resolved_type]
    format_valid = False
    check_digit_valid = False

    if not normalized:
        errors.append("Document number is required")
    elif not re.fullmatch(doc_format.pattern, normalized):
        errors.append(
            f"Invalid format for {resolved_type.value}: expected {doc_format.example}"
        )
    else:
        format_valid = True
        identifier = DocumentIdentifier(document_type=resolved_type, raw_value=normalized)
        check_digit_valid = verify_check_digit(_extract_digits(identifier.raw_value), resolved_type)
        if not check_digit_valid:
            errors.append("Invalid check digit")

    age: int | None = None
    if birth_date is not None:
        try:
            age = calculate_age(_parse_date(birth_date), today)
        except (TypeError, ValueError):
            warnings.append(f"Invalid birth date: {birth_date}")
        else:
            if not MIN_AGE <= age <= MAX_AGE:
                warnings.append(f"Age out of range: {age}")

    is_expired = False
    if expiration_date is not None:
        try:
            is_expired = _parse_date(expiration_date) < today
        except (TypeError, ValueError):
            warnings.append(f"Invalid expiration date: {expiration_date}")
        else:
            if is_expired:
                warnings.append("Document is expired")

    confidence = compute_confidence(
        format_valid=format_valid,
        check_digit_valid=check_digit_valid,
        errors=errors,
        warnings=warnings,
        is_expired=is_expired,
        age=age,
    )

    if errors:
        logger.debug(f"Document {resolved_type.value} invalide: {errors}")

    return DocumentValidationResult(
        document_type=resolved_type,
        normalized_value=normalized,
        is_valid=not errors,
        check_digit_valid=check_digit_valid,
        format_valid=format_valid,
        confidence=confidence,
        errors=errors,
        warnings=warnings,
        age=age,
        is_expired=is_expired,
        type_inferred=type_inferred,
        issuing_authority=doc_format.issuing_authority,
    )


def validate_many(items: Iterable[DocumentValidationRequest]) -> list[DocumentValidationResult]:
    """Valide des requêtes dans l'ordre, dates de naissance et d'expiration comprises."""
    return [
        validate(
            item.document_number,
            item.document_type,
            item.birth_date,
            expiration_date=item.expiration_date,
        )
        for item in items
    ]
