"""
Typed records for the aviado.stack.current.v2 import format, plus the
ephemeral listing/detail records that only live inside one job run.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, HttpUrl, model_validator

SCHEMA_VERSION = "aviado.stack.current.v2"
SCHEMA_SEMVER = "2.1.0"
IMPORT_SOURCE = "fullscript_scraper"
SOURCE_NAME = "fullscript"

UNKNOWN_BRAND = "Unknown Brand"
UNKNOWN_PRODUCT = "Unknown Product"


class DosageForm(str, Enum):
    CAPSULE = "capsule"
    TABLET = "tablet"
    SOFTGEL = "softgel"
    LIQUID = "liquid"
    POWDER = "powder"
    GUMMY = "gummy"
    SPRAY = "spray"
    PATCH = "patch"
    CREAM = "cream"
    OIL = "oil"
    OTHER = "other"


class Category(str, Enum):
    VITAMIN = "vitamin"
    MINERAL = "mineral"
    ADAPTOGEN = "adaptogen"
    NOOTROPIC = "nootropic"
    AMINO_ACID = "amino_acid"
    PROBIOTIC = "probiotic"
    LONGEVITY = "longevity"
    METABOLIC = "metabolic"
    CARDIOVASCULAR = "cardiovascular"
    COGNITIVE = "cognitive"
    JOINT_SUPPORT = "joint_support"
    LIVER_SUPPORT = "liver_support"
    SLEEP_AID = "sleep_aid"
    DIGESTIVE_ENZYME = "digestive_enzyme"
    OIL_FATTY_ACID = "oil_fatty_acid"
    BOTANICAL = "botanical"
    ANTIOXIDANT = "antioxidant"
    MITOCHONDRIAL_SUPPORT = "mitochondrial_support"


class SourceType(str, Enum):
    MARKETPLACE = "marketplace"
    MANUAL_ENTRY = "manual_entry"
    PDF_IMPORT = "pdf_import"
    CSV_IMPORT = "csv_import"


DOSAGE_FORM_FALLBACK = DosageForm.OTHER
CATEGORY_FALLBACK = Category.BOTANICAL

ScrapeMode = Literal["full_catalog", "category", "brand", "search"]


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# --- output contract ---

class Ingredient(BaseModel):
    name: str = Field(min_length=1)
    amount: Optional[float] = None
    unit: Optional[str] = None
    standardization: Optional[str] = None
    equivalent: Optional[str] = None
    parent_ingredient_id: Optional[str] = None

    @model_validator(mode="after")
    def _amount_and_unit_together(self):
        if (self.amount is None) != (self.unit is None):
            raise ValueError("amount and unit must both be present or both be null")
        return self


class SourceMetadata(BaseModel):
    source_type: SourceType
    source_name: str = Field(min_length=1)
    source_url: Optional[HttpUrl] = None
    retrieved_at: datetime


class Product(BaseModel):
    # Required
    brand: str = Field(min_length=1)
    product_name: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    canonical_id: str = Field(min_length=1)
    dosage_form: DosageForm
    category: Category
    ingredients: List[Ingredient]
    confidence: float = Field(ge=0, le=1)
    source_metadata: SourceMetadata

    # Optional
    dose_per_unit: Optional[str] = None
    recommended_dose_label: Optional[str] = None
    key_ingredients_text: Optional[str] = None
    certifications: Optional[List[str]] = None
    allergen_info: Optional[str] = None
    notes: Optional[str] = None
    front_label_image_url: Optional[HttpUrl] = None
    back_label_image_url: Optional[HttpUrl] = None


class ImportMetadata(BaseModel):
    import_date: datetime
    import_source: Literal["fullscript_scraper"]
    llm_model: None = None
    confidence_threshold: float = Field(ge=0, le=1)
    notes: Optional[str] = None


class ImportEnvelope(BaseModel):
    schema_version: Literal["aviado.stack.current.v2"]
    version: str = Field(pattern=r"^\d+\.\d+\.\d+$")
    import_metadata: ImportMetadata
    products: List[Product]


# --- in-flight records (never persisted directly) ---

class RawListingItem(BaseModel):
    brand: str = UNKNOWN_BRAND
    product_name: str = UNKNOWN_PRODUCT
    image_url: Optional[str] = None
    detail_url: Optional[str] = None
    package_size: Optional[str] = None

    def dedupe_key(self) -> str:
        return self.detail_url or f"{self.brand}|{self.product_name}".lower()


class ProductPageData(BaseModel):
    description: str = ""
    warnings: Optional[str] = None
    dietary_restrictions: List[str] = Field(default_factory=list)
    certifications: List[str] = Field(default_factory=list)
    suggested_use: Optional[str] = None
    serving_size: Optional[str] = None
    ingredients: List[Ingredient] = Field(default_factory=list)
    ingredients_text: Optional[str] = None
    other_ingredients: List[str] = Field(default_factory=list)
    front_image_url: Optional[str] = None
    back_image_url: Optional[str] = None
    gallery_image_url: Optional[str] = None
    dietary_tags: List[str] = Field(default_factory=list)


class DetailEnrichedItem(RawListingItem):
    description: Optional[str] = None
    warnings: Optional[str] = None
    certifications: List[str] = Field(default_factory=list)
    dietary_restrictions: List[str] = Field(default_factory=list)
    suggested_use: Optional[str] = None
    serving_size: Optional[str] = None
    ingredients_text: Optional[str] = None
    ingredients: List[Ingredient] = Field(default_factory=list)
    other_ingredients: List[str] = Field(default_factory=list)
    back_image_url: Optional[str] = None
    enriched: bool = False

    @classmethod
    def from_listing(cls, item: RawListingItem) -> "DetailEnrichedItem":
        return cls(**item.model_dump())
