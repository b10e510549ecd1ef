"""Endpoints API pour la validation de documents d'identité.

La validation est purement locale (format, chiffre de contrôle, âge,
expiration): aucune dépendance externe, réponse toujours 200 avec le
résultat détaillé.
"""

from fastapi import APIRouter, Body
from opentelemetry import trace

from app.schemas.documents import DocumentValidationRequest, DocumentValidationResult
from app.services import document_validator

router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post(
    "/validate",
    response_model=DocumentValidationResult,
    summary="Valider un numéro de document",
    description="Vérifie le format, le chiffre de contrôle, l'âge et l'expiration d'un document",
)
async def validate_document(request: DocumentValidationRequest) -> DocumentValidationResult:
    """
    Valide un numéro de document.

    Le type est déduit du préfixe lorsqu'il n'est pas fourni; un type inconnu
    est traité comme une cédula d'identité avec un avertissement.
    """
    with tracer.start_as_current_span("validate_document") as span:
        result = document_validator.validate(
            request.document_number,
            request.document_type,
            request.birth_date,
            expiration_date=request.expiration_date,
        )
        span.set_attribute("document.type", result.document_type.value)
        span.set_attribute("document.valid", result.is_valid)
        return result


@router.post(
    "/validate-batch",
    response_model=list[DocumentValidationResult],
    summary="Valider plusieurs documents",
    description="Valide une liste de documents dans l'ordre de la requête",
)
async def validate_documents(
    requests: list[DocumentValidationRequest] = Body(..., max_length=100),
) -> list[DocumentValidationResult]:
    """Valide une liste de documents (100 maximum)."""
    return document_validator.validate_many(requests)
