"""
Maps free text onto the closed dosage-form and category vocabularies, and
scores how complete a finished product record is.
"""
import re
from typing import Any, List, Mapping, Optional, Pattern, Tuple

from slugify import slugify

from .schema import (
    CATEGORY_FALLBACK,
    DOSAGE_FORM_FALLBACK,
    UNKNOWN_BRAND,
    UNKNOWN_PRODUCT,
    Category,
    DosageForm,
)


def _rx(*alternatives: str) -> Pattern[str]:
    return re.compile("|".join(alternatives), re.I)


# Order matters: more specific forms first ("softgel" before "gel").
DOSAGE_FORM_PATTERNS: List[Tuple[DosageForm, Pattern[str]]] = [
    (DosageForm.SOFTGEL, _rx(r"\bsoft[\s-]?gels?\b")),
    (DosageForm.CAPSULE, _rx(r"\bcapsules?\b", r"\bv?caps\b", r"\bvcaps?\b", r"\bveg(?:gie)?[\s-]?caps?\b")),
    (DosageForm.TABLET, _rx(r"\btab(?:let)?s?\b", r"\bcaplets?\b", r"\blozenges?\b")),
    (DosageForm.LIQUID, _rx(r"\bliquids?\b", r"\btinctures?\b", r"\bdrops\b", r"\bsyrups?\b", r"\bfl\.?\s*oz\b")),
    (DosageForm.POWDER, _rx(r"\bpowders?\b", r"\bpwd\b")),
    (DosageForm.GUMMY, _rx(r"\bgumm(?:y|ies)\b", r"\bchewables?\b")),
    (DosageForm.SPRAY, _rx(r"\bsprays?\b")),
    (DosageForm.PATCH, _rx(r"\bpatch(?:es)?\b", r"\btransdermal\b")),
    (DosageForm.CREAM, _rx(r"\bcreams?\b", r"\blotions?\b", r"\btopical\b", r"\bgels?\b", r"\bbalms?\b", r"\bointments?\b")),
    (DosageForm.OIL, _rx(r"\boils?\b")),
]

# Vitamins first since they're the most common; botanical is the catch-all.
CATEGORY_PATTERNS: List[Tuple[Category, Pattern[str]]] = [
    (Category.VITAMIN, _rx(
        r"\bvitamin\s+[a-k]", r"\bmulti-?vitamin", r"ascorbic acid", r"tocopherol", r"retinol",
        r"cholecalciferol", r"cobalamin", r"\bniacin", r"riboflavin", r"thiamine?\b", r"\bbiotin\b",
        r"folate\b", r"folic acid\b",
    )),
    (Category.MINERAL, _rx(
        r"\bmagnesium\b", r"\bzinc\b", r"\biron\b", r"\bcalcium\b", r"\bselenium\b", r"\bpotassium\b",
        r"\bchromium\b", r"\bcopper\b", r"\bmanganese\b", r"\biodine\b",
    )),
    # No leading boundary on "omega": catches "ProOmega", "Klean Omega-3".
    (Category.OIL_FATTY_ACID, _rx(
        r"omega", r"\bfish oil\b", r"\bkrill oil\b", r"\bcod liver\b", r"\bepa\b", r"\bdha\b",
        r"eicosapentaenoic", r"docosahexaenoic", r"marine triglyceride", r"\bfatty acids?\b",
        r"\bflax", r"\bchia\b",
    )),
    (Category.PROBIOTIC, _rx(
        r"\bprobiotics?\b", r"\blactobacillus\b", r"\bbifidobacterium\b", r"\bsaccharomyces boulardii\b", r"\bcfu\b",
    )),
    (Category.DIGESTIVE_ENZYME, _rx(
        r"\bdigestive enzymes?\b", r"\bprotease\b", r"\bamylase\b", r"\blipase\b", r"\blactase\b",
        r"\bbromelain\b", r"\bpapain\b",
    )),
    (Category.ADAPTOGEN, _rx(
        r"\bashwagandha\b", r"\brhodiola\b", r"\bholy basil\b", r"\breishi\b", r"\bcordyceps\b",
        r"\bschisandra\b", r"\beleuthero\b", r"\bmaca\b",
    )),
    (Category.NOOTROPIC, _rx(
        r"\bnootropics?\b", r"\balpha[\s-]gpc\b", r"\bciticoline\b", r"\blion'?s mane\b", r"\bbacopa\b",
        r"\bginkgo\b", r"\bl-theanine\b",
    )),
    (Category.AMINO_ACID, _rx(
        r"\bamino acids?\b", r"\bl-carnitine\b", r"\bl-arginine\b", r"\bl-glutamine\b", r"\bl-lysine\b",
        r"\bl-tryptophan\b", r"\btaurine\b", r"\bglycine\b", r"\bcreatine\b",
    )),
    (Category.CARDIOVASCULAR, _rx(
        r"\bcoq10\b", r"\bcoenzyme q10\b", r"\bubiquinol\b", r"\bhawthorn\b", r"\bnattokinase\b", r"\bheart health\b",
    )),
    (Category.COGNITIVE, _rx(
        r"\bbrain health\b", r"\bcognitive\b", r"\bmemory\b", r"\bfocus\b", r"\bphosphatidylserine\b", r"\bps\b",
    )),
    (Category.JOINT_SUPPORT, _rx(
        r"\bjoints?\b", r"\bglucosamine\b", r"\bchondroitin\b", r"\bmsm\b", r"\bhyaluronic acid\b",
        r"\bcollagen\b", r"\bturmeric\b", r"\bcurcumin\b",
    )),
    (Category.LIVER_SUPPORT, _rx(
        r"\bliver\b", r"\bmilk thistle\b", r"\bsilymarin\b", r"\bnac\b", r"\bn-acetyl[\s-]?(?:l-)?cysteine\b",
        r"\bglutathione\b",
    )),
    (Category.SLEEP_AID, _rx(
        r"\bsleep\b", r"\bmelatonin\b", r"\bvalerian\b", r"\bpassionflower\b", r"\bchamomile\b", r"\b5-htp\b",
    )),
    (Category.ANTIOXIDANT, _rx(
        r"\bantioxidants?\b", r"\bresveratrol\b", r"\bpterostilbene\b", r"\bquercetin\b", r"\bpolyphenols?\b",
        r"\bastaxanthin\b",
    )),
    (Category.MITOCHONDRIAL_SUPPORT, _rx(
        r"\bmitochondrial\b", r"\bpqq\b", r"\balpha[\s-]lipoic acid\b", r"\bala\b", r"\bcarnosine\b",
    )),
    (Category.LONGEVITY, _rx(
        r"\blongevity\b", r"\bnad\b", r"\bnmn\b", r"\bspermidine\b", r"\brapamycin\b", r"\bmetformin\b",
    )),
    (Category.METABOLIC, _rx(
        r"\bmetabolic\b", r"\bberberine\b", r"\bchromium picolinate\b", r"\bcinnamon\b", r"\bblood sugar\b",
    )),
    (Category.BOTANICAL, _rx(r"\bherbal\b", r"\bbotanicals?\b", r"\bextracts?\b", r"\bherbs?\b")),
]


def _joined(*parts: Optional[str]) -> str:
    return " ".join(p for p in parts if p)


def classify_dosage_form(
    name: Optional[str],
    description: Optional[str] = None,
    package_label: Optional[str] = None,
) -> DosageForm:
    """
    First matching form over name + description + package label
    ("90 capsules", "2 fl oz"); `other` when nothing matches.
    """
    text = _joined(name, description, package_label)
    for form, pattern in DOSAGE_FORM_PATTERNS:
        if pattern.search(text):
            return form
    return DOSAGE_FORM_FALLBACK


def classify_category(name: Optional[str], ingredient_text: Optional[str] = None) -> Category:
    text = _joined(name, ingredient_text)
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return CATEGORY_FALLBACK


# --- confidence ---

# (weight, predicate over the record). Weights sum to 100.
CONFIDENCE_WEIGHTS: List[Tuple[int, Any]] = [
    # core
    (10, lambda r: bool(r.get("brand")) and r.get("brand") != UNKNOWN_BRAND),
    (10, lambda r: bool(r.get("product_name")) and r.get("product_name") != UNKNOWN_PRODUCT),
    (10, lambda r: bool(r.get("dosage_form")) and _value(r.get("dosage_form")) != DOSAGE_FORM_FALLBACK.value),
    (10, lambda r: bool(r.get("category")) and _value(r.get("category")) != CATEGORY_FALLBACK.value),
    (10, lambda r: bool(r.get("ingredients"))),
    # important
    (6, lambda r: bool(r.get("dose_per_unit"))),
    (6, lambda r: bool(r.get("recommended_dose_label"))),
    (6, lambda r: bool(r.get("key_ingredients_text"))),
    (6, lambda r: bool(r.get("certifications"))),
    (6, lambda r: bool(r.get("allergen_info"))),
    # nice to have
    (10, lambda r: bool(r.get("front_label_image_url"))),
    (10, lambda r: bool(r.get("back_label_image_url"))),
]


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def calculate_confidence(record: Mapping[str, Any], weights=CONFIDENCE_WEIGHTS) -> float:
    """Weighted field completeness in [0, 1]. A heuristic, not a correctness measure."""
    total = sum(w for w, _ in weights)
    score = sum(w for w, present in weights if present(record))
    return round(min(score / total, 1.0), 4) if total else 0.0


# --- identity ---

def display_name(brand: str, name: str) -> str:
    return f"{brand} - {name}"


def slugify_id(text: str) -> str:
    return slugify(text or "", separator="_")


def canonical_id(brand: str, name: str) -> str:
    """
    >>> canonical_id("Thorne Research", "Vitamin D3 1000 IU")
    'thorne_research_vitamin_d3_1000_iu'
    """
    return slugify_id(f"{brand} {name}")
