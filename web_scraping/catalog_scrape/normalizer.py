import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from pydantic import BaseModel, Field

from . import classifier
from .product_page_parser import (
    create_fallback_ingredient,
    key_ingredients_text,
    parse_ingredients,
)
from .schema import (
    IMPORT_SOURCE,
    SCHEMA_SEMVER,
    SCHEMA_VERSION,
    SOURCE_NAME,
    DetailEnrichedItem,
    ProductPageData,
    SourceType,
    iso_timestamp,
)
from .validator import apply_validation

logger = logging.getLogger(__name__)


class ConversionResult(BaseModel):
    products: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    invalid_count: int = 0


def _enum_value(v: Any) -> Any:
    return getattr(v, "value", v)


def _absolute_url(base_url: Optional[str], url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    full = urljoin(base_url, url) if base_url else url
    return full if full.startswith(("http://", "https://")) else None


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def merge_product_page(item: DetailEnrichedItem, page: ProductPageData) -> DetailEnrichedItem:
    """Overlay what a detail visit found onto the listing record. Listing data wins only where the page is empty."""
    update: Dict[str, Any] = {
        "description": page.description or item.description,
        "warnings": page.warnings or item.warnings,
        "certifications": page.certifications or item.certifications,
        "dietary_restrictions": page.dietary_restrictions or page.dietary_tags or item.dietary_restrictions,
        "suggested_use": page.suggested_use or item.suggested_use,
        "serving_size": page.serving_size or item.serving_size,
        "other_ingredients": page.other_ingredients or item.other_ingredients,
        "back_image_url": page.back_image_url or item.back_image_url,
        "image_url": page.front_image_url or item.image_url or page.gallery_image_url,
        "enriched": True,
    }
    if page.ingredients:
        update["ingredients"] = page.ingredients
        update["ingredients_text"] = key_ingredients_text(page.ingredients, max_count=len(page.ingredients))
    elif page.ingredients_text:
        update["ingredients_text"] = page.ingredients_text
    return item.model_copy(update=update)


def _notes(item: DetailEnrichedItem) -> Optional[str]:
    parts = []
    if item.description:
        parts.append(item.description)
    if item.warnings:
        parts.append(f"Warnings: {item.warnings}")
    if item.other_ingredients:
        parts.append(f"Other Ingredients: {', '.join(item.other_ingredients)}")
    return "\n\n".join(parts) or None


def to_product_record(
    item: DetailEnrichedItem,
    base_url: Optional[str],
    retrieved_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the output record for one item. Optional keys whose value is None
    are left out so the record serializes the same way consumers expect.
    """
    dosage_form = classifier.classify_dosage_form(
        item.product_name, item.description, item.serving_size or item.package_size
    )
    category = classifier.classify_category(item.product_name, item.ingredients_text)

    if item.ingredients:
        ingredients = list(item.ingredients)
    elif item.ingredients_text:
        ingredients = parse_ingredients(item.ingredients_text)
    else:
        ingredients = [create_fallback_ingredient(item.product_name)]

    source_metadata = _drop_none({
        "source_type": SourceType.MARKETPLACE.value,
        "source_name": SOURCE_NAME,
        "source_url": _absolute_url(base_url, item.detail_url),
        "retrieved_at": iso_timestamp(retrieved_at),
    })

    record = _drop_none({
        "brand": item.brand,
        "product_name": item.product_name,
        "display_name": classifier.display_name(item.brand, item.product_name),
        "canonical_id": classifier.canonical_id(item.brand, item.product_name),
        "dosage_form": _enum_value(dosage_form),
        "category": _enum_value(category),
        "ingredients": [i.model_dump() for i in ingredients],
        "confidence": 0.0,
        "source_metadata": source_metadata,
        "dose_per_unit": item.serving_size or item.package_size,
        "recommended_dose_label": item.suggested_use,
        "key_ingredients_text": key_ingredients_text(ingredients) or None,
        "certifications": list(item.certifications) or None,
        "allergen_info": ", ".join(item.dietary_restrictions) or None,
        "notes": _notes(item),
        "front_label_image_url": _absolute_url(base_url, item.image_url),
        "back_label_image_url": _absolute_url(base_url, item.back_image_url),
    })
    record["confidence"] = classifier.calculate_confidence(record)
    return record


def convert_products(
    items: List[DetailEnrichedItem],
    base_url: Optional[str],
    retrieved_at: Optional[datetime] = None,
) -> ConversionResult:
    """
    Convert the whole batch in listing order. Invalid records are kept with a
    confidence penalty; only a record that cannot be built at all is dropped.
    """
    result = ConversionResult()
    for item in items:
        try:
            record = to_product_record(item, base_url, retrieved_at)
        except Exception as e:
            logger.error("[CONVERT] Could not convert %s: %s: %s", item.product_name, type(e).__name__, e)
            result.errors.append(f"Conversion failed for {item.product_name}: {e}")
            continue

        check = apply_validation(record)
        if not check.success:
            result.invalid_count += 1
            result.errors.append(f"Validation failed for {record.get('product_name')}: {'; '.join(check.errors)}")
        result.products.append(record)

    logger.info("[CONVERT] Converted %d products (%d failed validation)", len(result.products), result.invalid_count)
    return result


def build_import(
    products: List[Dict[str, Any]],
    mode: str,
    filter_value: Optional[str],
    confidence_threshold: float = 0.8,
    import_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "version": SCHEMA_SEMVER,
        "import_metadata": {
            "import_date": iso_timestamp(import_date),
            "import_source": IMPORT_SOURCE,
            "llm_model": None,
            "confidence_threshold": confidence_threshold,
            "notes": f"Scraped {len(products)} products from Fullscript (mode: {mode}, filter: {filter_value or 'none'})",
        },
        "products": products,
    }
