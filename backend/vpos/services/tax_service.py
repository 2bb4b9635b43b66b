# Overview: Jurisdiction-aware tax computation; pure functions, no database access.

"""
Tax Engine

WHY: Tobacco and vape products carry a state surcharge on top of ordinary
sales tax, and the receipt has to itemize each tax line. Tax is computed
from line amounts, the store's jurisdiction and the customer's exemption,
and nothing else, so the same cart always produces the same breakdown.

RULES:
- Exempt customer: no tax at all, the whole subtotal is reported exempt.
- Exempt line: contributes to exempt_amount, excluded from the taxable base.
- Base sales tax on the whole taxable base at the jurisdiction's rate.
- Regulated (special category) lines additionally carry sales tax on the
  regulated amount plus the jurisdiction's surcharge rate.
- Every breakdown entry is rounded to the cent before summing.
- Negative line amounts are rejected, not silently taxed as zero.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from vpos.errors import ValidationError
from vpos.money import quantize


# =============================================================================
# RATE TABLES
# =============================================================================

# Applied when the jurisdiction is unknown or not configured
DEFAULT_BASE_RATE = Decimal("0.08")
DEFAULT_TOBACCO_RATE = Decimal("0.05")

STATE_SALES_TAX_RATES: dict[str, Decimal] = {
    code: Decimal(rate) for code, rate in {
        "AL": "0.04", "AK": "0.00", "AZ": "0.056", "AR": "0.065", "CA": "0.075",
        "CO": "0.029", "CT": "0.0635", "DE": "0.00", "FL": "0.06", "GA": "0.04",
        "HI": "0.04", "ID": "0.06", "IL": "0.0625", "IN": "0.07", "IA": "0.06",
        "KS": "0.065", "KY": "0.06", "LA": "0.045", "ME": "0.055", "MD": "0.06",
        "MA": "0.0625", "MI": "0.06", "MN": "0.0688", "MS": "0.07", "MO": "0.0423",
        "MT": "0.00", "NE": "0.055", "NV": "0.0685", "NH": "0.00", "NJ": "0.0663",
        "NM": "0.0513", "NY": "0.08", "NC": "0.0475", "ND": "0.05", "OH": "0.0575",
        "OK": "0.045", "OR": "0.00", "PA": "0.06", "RI": "0.07", "SC": "0.06",
        "SD": "0.045", "TN": "0.07", "TX": "0.0625", "UT": "0.061", "VT": "0.06",
        "VA": "0.053", "WA": "0.065", "WV": "0.06", "WI": "0.05", "WY": "0.04",
    }.items()
}

TOBACCO_SURCHARGE_RATES: dict[str, Decimal] = {
    "NY": Decimal("0.20"),
    "CA": Decimal("0.15"),
    "TX": Decimal("0.10"),
    "FL": Decimal("0.12"),
    "IL": Decimal("0.18"),
}

SPECIAL_CATEGORY_TOBACCO = "tobacco"

# Product special-tax categories that fall under the tobacco surcharge
SPECIAL_CATEGORY_ALIASES = {
    "tobacco": SPECIAL_CATEGORY_TOBACCO,
    "vape": SPECIAL_CATEGORY_TOBACCO,
    "e-cigarette": SPECIAL_CATEGORY_TOBACCO,
}

# Label used when no jurisdiction is configured
DEFAULT_JURISDICTION_LABEL = "DEFAULT"


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class TaxLine:
    """One cart line as the tax engine sees it (amount = line total)."""
    amount: Decimal
    category: str | None = None
    special_category: str | None = None
    is_exempt: bool = False


@dataclass(frozen=True)
class TaxBreakdownEntry:
    code: str
    name: str
    tax_type: str  # SALES, SPECIAL
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "type": self.tax_type,
            "rate": str(self.rate),
            "taxable_amount": str(self.taxable_amount),
            "tax_amount": str(self.tax_amount),
        }


@dataclass(frozen=True)
class TaxBreakdown:
    jurisdiction: str
    subtotal: Decimal
    exempt_amount: Decimal
    taxable_amount: Decimal
    total_tax_amount: Decimal
    total_amount: Decimal
    entries: tuple[TaxBreakdownEntry, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "jurisdiction": self.jurisdiction,
            "subtotal": str(self.subtotal),
            "exempt_amount": str(self.exempt_amount),
            "taxable_amount": str(self.taxable_amount),
            "total_tax_amount": str(self.total_tax_amount),
            "total_amount": str(self.total_amount),
            "jurisdiction_breakdown": [entry.to_dict() for entry in self.entries],
        }


# =============================================================================
# RATE LOOKUPS
# =============================================================================

def normalize_jurisdiction(jurisdiction: str | None) -> str | None:
    if jurisdiction is None:
        return None
    code = jurisdiction.strip().upper()
    return code or None


def get_base_rate(jurisdiction: str | None) -> Decimal:
    """State sales-tax rate; unknown jurisdictions fall back to DEFAULT_BASE_RATE."""
    code = normalize_jurisdiction(jurisdiction)
    if code is None:
        return DEFAULT_BASE_RATE
    return STATE_SALES_TAX_RATES.get(code, DEFAULT_BASE_RATE)


def get_special_rate(jurisdiction: str | None, special_category: str) -> Decimal:
    """Surcharge rate for a regulated category (0 for unregulated categories)."""
    if normalize_special_category(special_category) != SPECIAL_CATEGORY_TOBACCO:
        return Decimal("0")
    code = normalize_jurisdiction(jurisdiction)
    if code is None:
        return DEFAULT_TOBACCO_RATE
    return TOBACCO_SURCHARGE_RATES.get(code, DEFAULT_TOBACCO_RATE)


def normalize_special_category(special_category: str | None) -> str | None:
    if not special_category:
        return None
    return SPECIAL_CATEGORY_ALIASES.get(special_category.strip().lower())


# =============================================================================
# COMPUTATION
# =============================================================================

def compute_tax(
    lines: list[TaxLine],
    jurisdiction: str | None,
    customer_exempt: bool = False,
) -> TaxBreakdown:
    """
    Compute the tax breakdown for a set of lines.

    Pure: no I/O, no clock, deterministic ordering. Identical input gives an
    identical (and identically serialized) result.

    Raises:
        ValidationError: If any line amount is negative
    """
    for index, line in enumerate(lines):
        if line.amount < 0:
            raise ValidationError(
                "Line amount cannot be negative",
                details={"line_index": index, "amount": str(line.amount)},
            )

    code = normalize_jurisdiction(jurisdiction)
    label = code or DEFAULT_JURISDICTION_LABEL

    subtotal = quantize(sum((line.amount for line in lines), Decimal("0")))

    if customer_exempt:
        return TaxBreakdown(
            jurisdiction=label,
            subtotal=subtotal,
            exempt_amount=subtotal,
            taxable_amount=Decimal("0.00"),
            total_tax_amount=Decimal("0.00"),
            total_amount=subtotal,
            entries=(),
        )

    exempt_amount = Decimal("0")
    taxable_amount = Decimal("0")
    # special category -> regulated amount; insertion order is line order,
    # sorted below so the output does not depend on cart order
    special_amounts: dict[str, Decimal] = {}

    for line in lines:
        if line.is_exempt:
            exempt_amount += line.amount
            continue
        taxable_amount += line.amount
        special = normalize_special_category(line.special_category)
        if special is not None:
            special_amounts[special] = special_amounts.get(special, Decimal("0")) + line.amount

    base_rate = get_base_rate(code)
    entries: list[TaxBreakdownEntry] = []

    if taxable_amount > 0:
        entries.append(TaxBreakdownEntry(
            code=f"{label}_SALES",
            name=f"{label} Sales Tax",
            tax_type="SALES",
            rate=base_rate,
            taxable_amount=quantize(taxable_amount),
            tax_amount=quantize(taxable_amount * base_rate),
        ))

    for special in sorted(special_amounts):
        amount = special_amounts[special]
        if amount <= 0:
            continue
        suffix = special.upper()
        entries.append(TaxBreakdownEntry(
            code=f"{label}_SALES_{suffix}",
            name=f"{label} Sales Tax on {special.title()}",
            tax_type="SALES",
            rate=base_rate,
            taxable_amount=quantize(amount),
            tax_amount=quantize(amount * base_rate),
        ))
        special_rate = get_special_rate(code, special)
        entries.append(TaxBreakdownEntry(
            code=f"{label}_{suffix}",
            name=f"{label} {special.title()} Tax",
            tax_type="SPECIAL",
            rate=special_rate,
            taxable_amount=quantize(amount),
            tax_amount=quantize(amount * special_rate),
        ))

    total_tax = sum((entry.tax_amount for entry in entries), Decimal("0.00"))

    return TaxBreakdown(
        jurisdiction=label,
        subtotal=subtotal,
        exempt_amount=quantize(exempt_amount),
        taxable_amount=quantize(taxable_amount),
        total_tax_amount=quantize(total_tax),
        total_amount=quantize(subtotal + total_tax),
        entries=tuple(entries),
    )
