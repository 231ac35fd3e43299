"""
Pattern parsers for product detail pages.

Every function here takes an HTML (or plain text) fragment and returns typed
fields. They have no browser dependency and never raise on malformed input:
anything that cannot be parsed comes back empty or None.
"""
import html as html_lib
import re
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .schema import Ingredient

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_SEGMENT_SPLIT_RE = re.compile(r"<br\s*/?>|</?p(?:\s[^>]*)?>|</?li(?:\s[^>]*)?>", re.I)
_BOLD_RE = re.compile(r"<(strong|b)(?:\s[^>]*)?>(.*?)</\1\s*>", re.I | re.S)
_ITALIC_RE = re.compile(r"<(i|em)(?:\s[^>]*)?>(.*?)</\1\s*>", re.I | re.S)
_AMOUNT_RE = re.compile(
    r"(?:\.{2,}|…|\s)\s*(\d[\d,]*(?:\.\d+)?)\s*((?:billion|million)\s+cfu|[a-zA-Zµμ%]+)",
    re.I,
)
_EQUIVALENT_RE = re.compile(r"\((?:as|from)\s+([^)]+)\)", re.I)

_AMOUNT_PER_SERVING_RE = re.compile(
    r"(?:<(?:strong|b)(?:\s[^>]*)?>\s*)?Amount\s+Per\s+Serving\s*:?\s*(?:</(?:strong|b)\s*>)?",
    re.I,
)
_OTHER_INGREDIENTS_START_RE = re.compile(
    r"(?:<p(?:\s[^>]*)?>\s*)?(?:<(?:strong|b)(?:\s[^>]*)?>\s*)?Other\s+Ingredients",
    re.I,
)

_HEADER_NAMES = (
    "amount per serving", "supplement facts", "% daily value", "daily value",
    "servings per container", "serving size", "suggested use", "directions",
)

_UNIT_ALIASES = {
    "milligram": "mg",
    "milligrams": "mg",
    "microgram": "mcg",
    "micrograms": "mcg",
    "µg": "mcg",
    "μg": "mcg",
    "ug": "mcg",
    "gram": "g",
    "grams": "g",
    "international unit": "iu",
    "international units": "iu",
    "billion cfu": "billion cfu",
    "million cfu": "million cfu",
}

CERTIFICATION_KEYWORDS_RE = re.compile(
    r"\b(?:nsf|gmp|cgmp|usp|usda|organic|non-gmo|certified|verified|approved|third[- ]party)\b",
    re.I,
)
DIETARY_KEYWORDS_RE = re.compile(
    r"\b(?:gluten[- ]free|dairy[- ]free|soy[- ]free|sugar[- ]free|nut[- ]free|egg[- ]free|"
    r"allergen[- ]free|vegan|vegetarian|non[- ]gmo|organic|kosher|halal|paleo|keto|low[- ]carb)\b",
    re.I,
)
_CERT_PHRASE_RE = re.compile(
    r"\b((?:[A-Z][A-Za-z0-9&+-]*\s+){1,3}(?:Certified|Verified|Approved))\b"
)
_BADGE_CLASS_RE = re.compile(r"(?:^|[-_])(?:badge|tag|chip|pill)s?(?:$|[-_])", re.I)

MAX_TAG_LENGTH = 40
MAX_CERTIFICATION_LENGTH = 60


# ----------------------------------------------------------------------------
# text helpers
# ----------------------------------------------------------------------------

def _collapse(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _strip_tags(fragment: str) -> str:
    return _collapse(html_lib.unescape(_TAG_RE.sub("", fragment or "")))


def clean_html_text(html: Optional[str]) -> str:
    """Visible text of an HTML fragment, scripts/styles removed, whitespace collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return _collapse(soup.get_text(" "))


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def _label_pattern(label: str) -> "re.Pattern[str]":
    words = r"\s+".join(re.escape(w) for w in label.split())
    return re.compile(
        r"(?:<(?:strong|b)(?:\s[^>]*)?>\s*)?" + words
        + r"(?:\s*:\s*(?:</(?:strong|b)\s*>)?|\s*</(?:strong|b)\s*>\s*:?)"
        + r"\s*(?:<br\s*/?>\s*)*(.*?)(?=<br|</p>|</li>|</div>|$)",
        re.I | re.S,
    )


_SUGGESTED_USE_RE = _label_pattern("Suggested Use")
_SERVING_SIZE_RE = _label_pattern("Serving Size")
_OTHER_INGREDIENTS_RE = _label_pattern("Other Ingredients")
_WARNINGS_RE = re.compile(
    r"<(?:strong|b)>\s*(?:Warnings?|Caution|Contraindications)\s*:\s*</(?:strong|b)>\s*(.*?)(?=<br|</p>|</div>|$)",
    re.I | re.S,
)


def extract_labeled_value(html: Optional[str], label: str) -> Optional[str]:
    """Value following `label:` up to the next line break or block end."""
    if not html:
        return None
    pattern = {
        "Suggested Use": _SUGGESTED_USE_RE,
        "Serving Size": _SERVING_SIZE_RE,
        "Other Ingredients": _OTHER_INGREDIENTS_RE,
    }.get(label) or _label_pattern(label)
    match = pattern.search(html)
    if not match:
        return None
    return _strip_tags(match.group(1)) or None


# ----------------------------------------------------------------------------
# ingredients
# ----------------------------------------------------------------------------

def normalize_unit(unit: str) -> str:
    normalized = _collapse(unit.lower())
    return _UNIT_ALIASES.get(normalized, normalized)


def _to_amount(raw: str) -> Optional[float]:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def split_top_level(text: Optional[str], separator: str = ",") -> List[str]:
    """
    Split on `separator` only outside parentheses/brackets, so that
    "cellulose (water, glycerin), silica" gives two entries.
    """
    if not text:
        return []
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    for char in text:
        if char in "([{":
            depth += 1
        elif char in ")]}":
            depth = max(depth - 1, 0)
        if char == separator and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def _is_header(name: str) -> bool:
    lowered = name.lower()
    return any(h in lowered for h in _HEADER_NAMES)


def _equivalent_from_name(name: str) -> Optional[str]:
    match = _EQUIVALENT_RE.search(name)
    return _collapse(match.group(1)) if match else None


def _parse_block_segment(segment: str) -> Tuple[Optional[Ingredient], Optional[str]]:
    """
    One paragraph/line of the "Amount Per Serving" block.

    Returns (ingredient, orphan_note): orphan_note is an italic note on a line
    that has no bold name, which belongs to the ingredient above it.
    """
    italic = _ITALIC_RE.search(segment)
    standardization = _strip_tags(italic.group(2)) or None if italic else None

    bold = _BOLD_RE.search(segment)
    if not bold:
        return None, standardization

    # a trailing colon is label punctuation: "Proprietary Blend:" is still a row
    name = _strip_tags(bold.group(2)).rstrip(":").strip()
    if not name or _is_header(name):
        return None, None

    remainder = _ITALIC_RE.sub(" ", segment[bold.end():])
    remainder = " " + _strip_tags(remainder)
    amount_match = _AMOUNT_RE.search(remainder)

    amount = unit = None
    if amount_match:
        amount = _to_amount(amount_match.group(1))
        unit = normalize_unit(amount_match.group(2)) if amount is not None else None

    return (
        Ingredient(
            name=name,
            amount=amount,
            unit=unit,
            standardization=standardization,
            equivalent=_equivalent_from_name(name) or _equivalent_from_name(remainder),
        ),
        None,
    )


def parse_ingredient_block(html: Optional[str]) -> List[Ingredient]:
    """Structured rows between "Amount Per Serving" and "Other Ingredients"."""
    if not html:
        return []
    start = _AMOUNT_PER_SERVING_RE.search(html)
    if not start:
        return []
    end = _OTHER_INGREDIENTS_START_RE.search(html, start.end())
    block = html[start.end(): end.start() if end else len(html)]

    ingredients: List[Ingredient] = []
    for segment in _SEGMENT_SPLIT_RE.split(block):
        if not segment.strip():
            continue
        ingredient, orphan_note = _parse_block_segment(segment)
        if ingredient is not None:
            ingredients.append(ingredient)
        elif orphan_note and ingredients and ingredients[-1].standardization is None:
            ingredients[-1] = ingredients[-1].model_copy(update={"standardization": orphan_note})
    return ingredients


def parse_other_ingredients(html: Optional[str]) -> List[str]:
    return split_top_level(extract_labeled_value(html, "Other Ingredients"))


def parse_more_section(html: Optional[str]) -> Dict[str, object]:
    """
    Parse the "More" disclosure (suggested use, serving size, supplement
    facts rows and other ingredients).
    """
    return {
        "suggested_use": extract_labeled_value(html, "Suggested Use"),
        "serving_size": extract_labeled_value(html, "Serving Size"),
        "ingredients": parse_ingredient_block(html),
        "other_ingredients": parse_other_ingredients(html),
    }


_LINE_FULL_RE = re.compile(r"^(.+?)\s*\(([^)]+)\)\s*(\d[\d,]*(?:\.\d+)?)\s*([a-zA-Zµμ%]+)$")
_LINE_SIMPLE_RE = re.compile(r"^(.+?)\s+(\d[\d,]*(?:\.\d+)?)\s*([a-zA-Zµμ%]+)$")


def parse_ingredient_line(line: Optional[str]) -> Optional[Ingredient]:
    """
    "Vitamin D3 (as cholecalciferol) 1000 IU", "EPA 800 mg", "DHEA ... 10mg"
    or a bare name.
    """
    clean = _collapse(re.sub(r"\.{2,}|…", " ", line or ""))
    if not clean:
        return None

    match = _LINE_FULL_RE.match(clean)
    if match:
        name, form, amount, unit = match.groups()
        value = _to_amount(amount)
        if value is not None:
            return Ingredient(
                name=name.strip(),
                amount=value,
                unit=normalize_unit(unit),
                equivalent=_collapse(re.sub(r"^(?:as|from)\s+", "", form, flags=re.I)),
            )

    match = _LINE_SIMPLE_RE.match(clean)
    if match:
        name, amount, unit = match.groups()
        value = _to_amount(amount)
        if value is not None:
            return Ingredient(name=name.strip(), amount=value, unit=normalize_unit(unit))

    return Ingredient(name=clean)


def parse_ingredients(text: Optional[str]) -> List[Ingredient]:
    if not text or not text.strip():
        return []
    lines = [p for chunk in re.split(r"[\n;]+", text) for p in split_top_level(chunk)]
    return [ing for ing in (parse_ingredient_line(line) for line in lines) if ing is not None]


def parse_supplement_facts_table(html: Optional[str]) -> List[Ingredient]:
    """Rows of a <table> supplement facts panel: name cell, amount cell."""
    if not html:
        return []
    soup = BeautifulSoup(html, "lxml")
    table = soup.select_one("table.supplement-facts, [class*='supplement-facts'] table, [class*='supplement-facts']")
    if table is None:
        return []
    ingredients: List[Ingredient] = []
    for row in table.select("tr"):
        cells = [_collapse(c.get_text(" ")) for c in row.find_all(["td", "th"])]
        if len(cells) < 2 or not cells[0] or _is_header(cells[0]):
            continue
        ingredient = parse_ingredient_line(f"{cells[0]} {cells[1]}")
        if ingredient is not None:
            ingredients.append(ingredient)
    return ingredients


def create_fallback_ingredient(product_name: str) -> Ingredient:
    """Best guess at the single active ingredient when no facts panel was read."""
    match = re.match(r"^(.+?)\s+(\d+(?:\.\d+)?)\s*([a-z]+)", product_name or "", re.I)
    if match:
        name, amount, unit = match.groups()
        return Ingredient(name=name.strip(), amount=float(amount), unit=normalize_unit(unit))
    return Ingredient(name=(product_name or "").strip() or "Unknown")


def _format_amount(amount: float) -> str:
    return f"{amount:g}"


def ingredient_label(ingredient: Ingredient) -> str:
    if ingredient.amount is not None and ingredient.unit:
        return f"{ingredient.name} {_format_amount(ingredient.amount)}{ingredient.unit}"
    return ingredient.name


def key_ingredients_text(ingredients: List[Ingredient], max_count: int = 5) -> str:
    return ", ".join(ingredient_label(i) for i in ingredients[:max_count])


# ----------------------------------------------------------------------------
# badges, tags, certifications
# ----------------------------------------------------------------------------

def is_dietary_tag(text: str) -> bool:
    text = _collapse(text or "")
    return 0 < len(text) <= MAX_TAG_LENGTH and bool(DIETARY_KEYWORDS_RE.search(text))


def is_certification(text: str) -> bool:
    text = _collapse(text or "")
    return 0 < len(text) <= MAX_CERTIFICATION_LENGTH and bool(CERTIFICATION_KEYWORDS_RE.search(text))


def _badge_texts(soup: BeautifulSoup) -> List[str]:
    texts = []
    for el in soup.find_all(class_=_BADGE_CLASS_RE):
        # innermost badges only; a badge row would read as one run-on tag
        if el.find(class_=_BADGE_CLASS_RE) is not None:
            continue
        texts.append(_collapse(el.get_text(" ")))
    for li in soup.find_all("li"):
        texts.append(_collapse(li.get_text(" ")))
    return texts


def _alt_texts(soup: BeautifulSoup) -> List[str]:
    return [_collapse(img.get("alt") or "") for img in soup.find_all("img")]


def parse_dietary_tags(html: Optional[str]) -> List[str]:
    """Dietary tags ("Gluten-Free", "Vegan", ...) from badges, list items and image alt text."""
    if not html:
        return []
    soup = BeautifulSoup(html, "lxml")
    candidates = _badge_texts(soup) + _alt_texts(soup)
    return _unique(t for t in candidates if is_dietary_tag(t))


def parse_certifications(html: Optional[str]) -> List[str]:
    """Certifications ("NSF Certified", "GMP", ...) from badge alt text, badges and phrases."""
    if not html:
        return []
    soup = BeautifulSoup(html, "lxml")
    found = [t for t in _alt_texts(soup) if is_certification(t)]
    found += [t for t in _badge_texts(soup) if is_certification(t)]

    for tag in soup(["script", "style"]):
        tag.decompose()
    # phrases are matched per text node so they never run across elements
    for text in soup.find_all(string=True):
        for m in _CERT_PHRASE_RE.finditer(_collapse(str(text))):
            if is_certification(m.group(1)):
                found.append(m.group(1).strip())
    return _unique(found)


def parse_warnings(html: Optional[str]) -> Optional[str]:
    """Inline "<strong>Warning:</strong> ..." text, when there's no Warnings disclosure."""
    if not html:
        return None
    match = _WARNINGS_RE.search(html)
    if not match:
        return None
    return clean_html_text(match.group(1)) or None


# ----------------------------------------------------------------------------
# page structure
# ----------------------------------------------------------------------------

_SECTION_HEADINGS = ["h2", "h3", "h4", "h5", "h6", "button", "summary", "span"]
_ROOT_NAMES = ("body", "html", "[document]")


def extract_section_html(html: Optional[str], label: str) -> Optional[str]:
    """
    Inner HTML of the disclosure section titled `label`.

    The section body is the element named by the toggle's aria-controls when
    present; otherwise whatever sits next to the toggle in its container.
    Collapsed sections are still in the DOM, so this works either way.
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "lxml")
    wanted = _collapse(label).lower()

    for heading in soup.find_all(_SECTION_HEADINGS):
        if _collapse(heading.get_text(" ")).lower() != wanted:
            continue

        if heading.has_attr("aria-expanded"):
            toggle = heading
        else:
            toggle = heading.find_parent(attrs={"aria-expanded": True}) or heading

        panel_id = toggle.get("aria-controls")
        if panel_id:
            panel = soup.find(id=panel_id)
            if panel is not None:
                return panel.decode_contents()

        node = toggle
        while node.parent is not None and node.parent.name not in _ROOT_NAMES:
            rest = "".join(str(c) for c in node.parent.children if c is not node).strip()
            if rest:
                return rest
            node = node.parent
    return None


# Product gallery only; header logos, nav arrows and badges sit outside it.
GALLERY_IMAGE_SELECTOR = (
    'img[src*="assets.fullscript"], img[alt*="product" i], '
    '[class*="gallery"] img, [class*="product-image"] img, [data-testid*="gallery"] img'
)
_WORD_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def _gallery_images(html: str, base_url: Optional[str]) -> Iterable[Tuple[str, set]]:
    """(absolute src, words of alt text and path) for each gallery image, in page order."""
    soup = BeautifulSoup(html, "lxml")
    for img in soup.select(GALLERY_IMAGE_SELECTOR):
        src = (img.get("src") or img.get("data-src") or "").strip()
        if not src or src.startswith("data:"):
            continue
        alt = _collapse(img.get("alt") or "")
        if alt and (is_certification(alt) or is_dietary_tag(alt)):
            continue
        if base_url:
            src = urljoin(base_url, src)
        path = urlparse(src).path.lower()
        if path.endswith(".svg"):
            continue
        yield src, set(_WORD_SPLIT_RE.split(f"{alt.lower()} {path}"))


def pick_label_images(html: Optional[str], base_url: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """
    (front, back) label image URLs from the product gallery.

    Back: the word "back" in alt text or a path segment. Front: the word
    "front", else the first image mentioning "label". A plain gallery image is
    not a label; see first_gallery_image.
    """
    if not html:
        return None, None
    front = back = labelled = None

    for src, words in _gallery_images(html, base_url):
        if "back" in words:
            back = back or src
        elif "front" in words:
            front = front or src
        elif "label" in words:
            labelled = labelled or src

    return front or labelled, back


def first_gallery_image(html: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    if not html:
        return None
    for src, words in _gallery_images(html, base_url):
        if "back" not in words:
            return src
    return None
