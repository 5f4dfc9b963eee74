"""
SKU Resolution Engine: deterministic, tiered product matching.
No I/O. Resolves an OCR-extracted SKU to its packaging configuration.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from core.products import DEFAULT_BOX_CONFIG, ProductConfig, product_config_from_dict

logger = logging.getLogger(__name__)

TIER_EXACT = "exact"
TIER_NORMALIZED = "normalized"
TIER_FUZZY = "fuzzy"
TIER_DEFAULT = "default"

MATCH_TIERS = (TIER_EXACT, TIER_NORMALIZED, TIER_FUZZY, TIER_DEFAULT)

# Uppercase Greek and Cyrillic letters OCR returns in place of Latin ones.
CONFUSABLE_TO_LATIN: Dict[str, str] = {
    "Α": "A",  # Greek Alpha
    "Β": "B",  # Greek Beta
    "Ε": "E",  # Greek Epsilon
    "Ζ": "Z",  # Greek Zeta
    "Η": "H",  # Greek Eta
    "Ι": "I",  # Greek Iota
    "Κ": "K",  # Greek Kappa
    "Μ": "M",  # Greek Mu
    "Ν": "N",  # Greek Nu
    "Ο": "O",  # Greek Omicron
    "Ρ": "P",  # Greek Rho
    "Τ": "T",  # Greek Tau
    "Υ": "Y",  # Greek Upsilon
    "Χ": "X",  # Greek Chi
    "А": "A",  # Cyrillic A
    "В": "B",  # Cyrillic Ve
    "Е": "E",  # Cyrillic Ie
    "К": "K",  # Cyrillic Ka
    "М": "M",  # Cyrillic Em
    "Н": "H",  # Cyrillic En
    "О": "O",  # Cyrillic O
    "Р": "P",  # Cyrillic Er
    "С": "C",  # Cyrillic Es
    "Т": "T",  # Cyrillic Te
    "У": "Y",  # Cyrillic U
    "Х": "X",  # Cyrillic Ha
    "І": "I",  # Cyrillic Byelorussian-Ukrainian I
    "Ј": "J",  # Cyrillic Je
    "Ѕ": "S",  # Cyrillic Dze
}

_CONFUSABLE_TABLE = str.maketrans(CONFUSABLE_TO_LATIN)


@dataclass(frozen=True)
class SkuMatch:
    """Result of resolving one SKU against the product master."""

    config: ProductConfig
    tier: str
    matched_sku: Optional[str]
    normalized_sku: str


def normalize_sku(sku: Any) -> str:
    """
    Canonicalize a SKU for comparison.

    Upper-cases the input and replaces look-alike Greek/Cyrillic capitals
    with their Latin equivalents. None yields an empty string.
    """
    if sku is None:
        return ""
    return str(sku).upper().translate(_CONFUSABLE_TABLE)


def build_normalized_index(master: Mapping[str, Any]) -> Dict[str, str]:
    """
    Map normalized SKU -> original master key.

    When several keys normalize identically the first in iteration order
    wins, matching a linear scan of the master.
    """
    index: Dict[str, str] = {}
    for key in master:
        index.setdefault(normalize_sku(key), key)
    return index


def match_sku(
    raw_sku: Any,
    master: Mapping[str, Any],
    index: Optional[Mapping[str, str]] = None,
) -> SkuMatch:
    """
    Resolve raw_sku through the exact, normalized, fuzzy and default tiers.

    Args:
        raw_sku: SKU as extracted (may be None or OCR-noisy).
        master: Product master, {sku: ProductConfig or dict}.
        index: Optional precomputed build_normalized_index(master).

    Returns:
        SkuMatch with the resolved configuration and tier. Never raises.
    """
    normalized = normalize_sku(raw_sku)

    if isinstance(raw_sku, str) and raw_sku in master:
        return SkuMatch(product_config_from_dict(master[raw_sku]), TIER_EXACT, raw_sku, normalized)

    if normalized in master:
        return SkuMatch(product_config_from_dict(master[normalized]), TIER_NORMALIZED, normalized, normalized)

    if normalized:
        if index is None:
            index = build_normalized_index(master)
        key = index.get(normalized)
        if key is not None:
            return SkuMatch(product_config_from_dict(master[key]), TIER_FUZZY, key, normalized)

    logger.warning("SKU not found in product master: %r (normalized: %r)", raw_sku, normalized)
    return SkuMatch(DEFAULT_BOX_CONFIG, TIER_DEFAULT, None, normalized)
