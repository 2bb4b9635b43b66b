# Overview: Read-only receipt projection of a committed transaction.

"""
Receipts

A receipt is built only from the committed Transaction, its LineItem
snapshots, the stored tax breakdown and the loyalty balance and tier
captured at sale time, plus store metadata for the header. Product and
customer counters are never consulted, so later edits or purchases do not
change a historical receipt.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from vpos.models import Transaction
from vpos.money import format_money
from vpos.time_utils import to_utc_z
from .checkout_service import get_transaction

RECEIPT_WIDTH = 40

# Item row columns: qty(3) + 2 + name + 1 + price(7) + 1 + total(8) = RECEIPT_WIDTH
ITEM_NAME_WIDTH = 18

FOOTER_LINES = [
    "Thank you for your business!",
    "Please come again!",
    "",
    "No returns without receipt",
    "All sales final on tobacco products",
]


def build_receipt(session: Session, transaction_id: int) -> dict:
    """
    Structured receipt: store header, line items, tax lines, totals,
    payment detail and loyalty summary.

    Raises:
        TransactionNotFound: If the transaction does not exist
    """
    txn = get_transaction(session, transaction_id)
    return receipt_from_transaction(txn)


def receipt_from_transaction(txn: Transaction) -> dict:
    store = txn.store
    breakdown = txn.tax_breakdown or {}

    tax_lines = [
        {
            "code": entry["code"],
            "name": entry["name"],
            "rate": entry["rate"],
            "taxable_amount": entry["taxable_amount"],
            "tax_amount": entry["tax_amount"],
        }
        for entry in breakdown.get("jurisdiction_breakdown", [])
    ]

    loyalty = None
    if txn.customer is not None:
        loyalty = {
            "earned": txn.loyalty_points_earned,
            "redeemed": txn.loyalty_points_redeemed,
            "balance": txn.loyalty_balance_after,
            "tier": txn.loyalty_tier_after,
        }

    return {
        "transaction_id": txn.id,
        "receipt_number": txn.receipt_number,
        "store_info": {
            "name": store.name,
            "address": store.formatted_address(),
            "phone": store.phone or "",
            "tax_id": store.tax_id or "",
            "footer": store.receipt_footer,
        },
        "transaction_date": to_utc_z(txn.transaction_at),
        "employee": f"#{txn.employee_id}" if txn.employee_id is not None else "",
        "customer": txn.customer.full_name if txn.customer is not None else None,
        "line_items": [
            {
                "line_number": line.line_number,
                "name": line.product_name,
                "sku": line.product_sku,
                "quantity": line.quantity,
                "unit_price": format_money(line.unit_price_cents),
                "line_total": format_money(line.line_total_cents),
                "age_verification_required": line.age_verification_required,
            }
            for line in txn.line_items
        ],
        "tax_jurisdiction": txn.tax_jurisdiction,
        "tax_lines": tax_lines,
        "subtotal": format_money(txn.subtotal_cents),
        "exempt_amount": format_money(txn.exempt_cents),
        "tax_amount": format_money(txn.tax_cents),
        "total_amount": format_money(txn.total_cents),
        "payment_method": txn.payment_method,
        "payment_reference": txn.payment_reference,
        "cash_tendered": format_money(txn.cash_tendered_cents),
        "change_given": format_money(txn.change_given_cents),
        "age_verification_required": txn.age_verification_required,
        "loyalty_points": loyalty,
    }


def _center(text: str) -> str:
    return text.center(RECEIPT_WIDTH).rstrip()


def _amount_row(label: str, amount: str) -> str:
    value = f"${amount}"
    return f"{label}{value.rjust(RECEIPT_WIDTH - len(label))}"


def format_receipt_text(receipt: dict) -> str:
    """Fixed-width (40 column) text rendering for a thermal printer."""
    rule = "=" * RECEIPT_WIDTH
    thin = "-" * RECEIPT_WIDTH
    store = receipt["store_info"]

    lines = [rule, _center(store["name"].upper())]
    if store["address"]:
        lines.append(_center(store["address"]))
    if store["phone"]:
        lines.append(_center(store["phone"]))
    lines += [rule, ""]

    lines.append(f"Receipt: {receipt['receipt_number']}")
    lines.append(f"Date: {receipt['transaction_date']}")
    if receipt["employee"]:
        lines.append(f"Cashier: {receipt['employee']}")
    if receipt["customer"]:
        lines.append(f"Customer: {receipt['customer']}")
    header = f"QTY  {'ITEM'.ljust(ITEM_NAME_WIDTH)} {'PRICE'.rjust(7)} {'TOTAL'.rjust(8)}"
    lines += ["", thin, header, thin]

    for item in receipt["line_items"]:
        name = item["name"]
        long_name = len(name) > ITEM_NAME_WIDTH
        name_col = (name[:ITEM_NAME_WIDTH - 3] + "...") if long_name else name.ljust(ITEM_NAME_WIDTH)
        price = f"${item['unit_price']}".rjust(7)
        total = f"${item['line_total']}".rjust(8)
        lines.append(f"{str(item['quantity']).rjust(3)}  {name_col} {price} {total}")
        if long_name:
            lines.append(f"     SKU: {item['sku']}")
        if item["age_verification_required"]:
            lines.append("     * Age verified")

    lines.append(thin)
    lines.append(_amount_row("Subtotal:", receipt["subtotal"]))
    if Decimal(receipt["exempt_amount"] or "0") > 0:
        lines.append(_amount_row("Tax Exempt:", receipt["exempt_amount"]))
    for tax in receipt["tax_lines"]:
        label = f"  {tax['name']}:"
        if len(label) > RECEIPT_WIDTH - 10:
            label = label[:RECEIPT_WIDTH - 13] + "...:"
        lines.append(_amount_row(label, tax["tax_amount"]))
    lines.append(_amount_row("Tax:", receipt["tax_amount"]))
    lines.append(_amount_row("TOTAL:", receipt["total_amount"]))
    lines.append("")

    lines.append(f"Payment: {receipt['payment_method']}")
    if receipt["cash_tendered"] is not None:
        lines.append(f"Cash Tendered: ${receipt['cash_tendered']}")
        lines.append(f"Change: ${receipt['change_given']}")
    lines.append("")

    loyalty = receipt.get("loyalty_points")
    if loyalty:
        lines += ["LOYALTY PROGRAM", thin]
        if loyalty["earned"] > 0:
            lines.append(f"Points Earned: {loyalty['earned']}")
        if loyalty["redeemed"] > 0:
            lines.append(f"Points Redeemed: {loyalty['redeemed']}")
        lines.append(f"Current Balance: {loyalty['balance']}")
        lines.append(f"Tier: {loyalty['tier']}")
        lines.append("")

    lines.append(rule)
    if store.get("footer"):
        lines.append(_center(store["footer"]))
    lines += FOOTER_LINES
    lines.append(rule)
    return "\n".join(lines)
