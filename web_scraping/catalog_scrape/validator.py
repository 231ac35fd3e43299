import logging
from typing import Any, List, Mapping, Type

from pydantic import BaseModel, Field, ValidationError

from .errors import ProductValidationError
from .schema import ImportEnvelope, Product

logger = logging.getLogger(__name__)

# Confidence taken off a product that fails validation but is kept anyway.
VALIDATION_PENALTY = 0.2


class ValidationResult(BaseModel):
    success: bool
    errors: List[str] = Field(default_factory=list)


def format_errors(exc: ValidationError) -> List[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        out.append(f"{loc}: {err.get('msg')}")
    return out


def _safe_validate(model: Type[BaseModel], data: Any) -> ValidationResult:
    try:
        model.model_validate(data)
    except ValidationError as exc:
        return ValidationResult(success=False, errors=format_errors(exc))
    return ValidationResult(success=True)


def safe_validate_product(record: Any) -> ValidationResult:
    return _safe_validate(Product, record)


def safe_validate_import(envelope: Any) -> ValidationResult:
    return _safe_validate(ImportEnvelope, envelope)


def validate_product(record: Mapping[str, Any]) -> Product:
    """
    Strict variant for callers that import records outside a scrape job:
    returns the parsed Product or raises ProductValidationError. The job
    itself uses safe_validate_product and keeps invalid records.
    """
    try:
        return Product.model_validate(record)
    except ValidationError as exc:
        name = str(record.get("product_name") or "<unnamed>")
        raise ProductValidationError(name, "; ".join(format_errors(exc))) from exc


def penalized(confidence: float, penalty: float = VALIDATION_PENALTY) -> float:
    return round(max(confidence - penalty, 0.0), 4)


def apply_validation(record: dict) -> ValidationResult:
    """
    Validate `record` in place. An invalid record keeps its place in the batch
    but loses VALIDATION_PENALTY of its confidence.
    """
    result = safe_validate_product(record)
    if not result.success:
        before = record.get("confidence") or 0.0
        if isinstance(before, (int, float)):
            record["confidence"] = penalized(float(before))
        logger.warning(
            "[VALIDATE] %s failed validation (confidence %s -> %s): %s",
            record.get("product_name"), before, record.get("confidence"), "; ".join(result.errors),
        )
    return result
