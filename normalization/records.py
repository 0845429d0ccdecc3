"""Canonical DTE records.

One registry row becomes one immutable record. Identity is the natural key
of the family:

- DteSaleRecord: (folio,)
- DtePurchaseRecord: (provider_rut, folio)

Builders apply the documented defaults so a record never carries a raw
string where a typed value is expected.
"""

from datetime import date
from decimal import Decimal
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from connectors.haulmer.models import DocumentType
from normalization.labels import normalize_headers
from normalization.values import (
    parse_date,
    to_decimal_or_zero,
    to_int,
    to_optional_decimal,
    to_optional_int,
    to_optional_str,
    to_required_str,
)


DEFAULT_SALE_DOCUMENT_TYPE = 41
DEFAULT_SALE_TYPE = "Del Giro"
DEFAULT_SALE_ORIGIN = "UPLOAD"
DEFAULT_PURCHASE_DOCUMENT_TYPE = 33
DEFAULT_PURCHASE_TYPE = "Compras del Giro"


# =============================================================================
# Base Model
# =============================================================================

class CanonicalRecord(BaseModel):
    """Base model for normalized records."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    record_type: ClassVar[str] = ""
    natural_key_fields: ClassVar[Tuple[str, ...]] = ()

    def natural_key(self) -> Tuple[Any, ...]:
        return tuple(getattr(self, name) for name in self.natural_key_fields)

    def missing_key_fields(self) -> Tuple[str, ...]:
        """Natural-key fields that are empty."""
        return tuple(
            name for name in self.natural_key_fields
            if getattr(self, name) is None or str(getattr(self, name)).strip() == ""
        )

    def to_fields(self) -> Dict[str, Any]:
        """Flat field mapping with typed values (Decimal, date, ...)."""
        return self.model_dump()


# =============================================================================
# Sales
# =============================================================================

class DteSaleRecord(CanonicalRecord):
    """Issued document (Registro de Ventas)."""
    record_type: ClassVar[str] = "dte_sale"
    natural_key_fields: ClassVar[Tuple[str, ...]] = ("folio",)

    register_number: int = 0
    document_type: int = DEFAULT_SALE_DOCUMENT_TYPE
    sale_type: str = DEFAULT_SALE_TYPE
    client_rut: str = ""
    client_name: str = ""
    folio: str = ""
    document_date: Optional[date] = None
    receipt_date: Optional[date] = None
    receipt_acknowledge_date: Optional[date] = None
    claim_date: Optional[date] = None
    period: str = ""
    exempt_amount: Decimal = Decimal(0)
    net_amount: Decimal = Decimal(0)
    iva_amount: Decimal = Decimal(0)
    total_amount: Decimal = Decimal(0)
    total_retained_iva: Decimal = Decimal(0)
    partial_retained_iva: Decimal = Decimal(0)
    non_retained_iva: Decimal = Decimal(0)
    own_iva: Decimal = Decimal(0)
    third_party_iva: Decimal = Decimal(0)
    late_iva: Decimal = Decimal(0)
    emitter_rut: Optional[str] = None
    commission_net_amount: Decimal = Decimal(0)
    commission_exempt_amount: Decimal = Decimal(0)
    commission_iva: Decimal = Decimal(0)
    reference_doc_type: Optional[str] = None
    reference_doc_folio: Optional[str] = None
    foreign_buyer_identifier: Optional[str] = None
    foreign_buyer_nationality: Optional[str] = None
    constructor_credit_amount: Decimal = Decimal(0)
    free_trade_zone_amount: Decimal = Decimal(0)
    container_guarantee_amount: Decimal = Decimal(0)
    non_billable_amount: Decimal = Decimal(0)
    international_transport_amount: Decimal = Decimal(0)
    non_cost_sale_indicator: int = 0
    periodic_service_indicator: int = 0
    total_period_amount: Decimal = Decimal(0)
    national_transport_passage_amount: Decimal = Decimal(0)
    internal_number: Optional[int] = None
    branch_code: Optional[str] = None
    origin: str = DEFAULT_SALE_ORIGIN
    informative_note: Optional[str] = None
    payment_note: Optional[str] = None
    notes: Optional[str] = None


# =============================================================================
# Purchases
# =============================================================================

class DtePurchaseRecord(CanonicalRecord):
    """Received document (Registro de Compras)."""
    record_type: ClassVar[str] = "dte_purchase"
    natural_key_fields: ClassVar[Tuple[str, ...]] = ("provider_rut", "folio")

    register_number: int = 0
    document_type: int = DEFAULT_PURCHASE_DOCUMENT_TYPE
    purchase_type: str = DEFAULT_PURCHASE_TYPE
    provider_rut: str = ""
    provider_name: str = ""
    folio: str = ""
    document_date: Optional[date] = None
    receipt_date: Optional[date] = None
    acknowledge_date: Optional[date] = None
    period: str = ""
    exempt_amount: Decimal = Decimal(0)
    net_amount: Decimal = Decimal(0)
    recoverable_iva: Decimal = Decimal(0)
    non_recoverable_iva: Decimal = Decimal(0)
    non_recoverable_iva_code: Optional[str] = None
    total_amount: Decimal = Decimal(0)
    fixed_asset_net_amount: Decimal = Decimal(0)
    common_use_iva: Decimal = Decimal(0)
    non_creditable_tax: Decimal = Decimal(0)
    non_retained_iva: Decimal = Decimal(0)
    pure_tobacco: Decimal = Decimal(0)
    cigarette_tobacco: Decimal = Decimal(0)
    elaborated_tobacco: Decimal = Decimal(0)
    other_tax_code: Optional[str] = None
    other_tax_amount: Decimal = Decimal(0)
    other_tax_rate: Optional[Decimal] = None
    reference_doc_note: Optional[str] = None
    notes: Optional[str] = None


# =============================================================================
# Builders
# =============================================================================

def _period(row: Mapping[str, Any], period: Optional[str]) -> str:
    value = row.get("period")
    if value is None or str(value).strip() == "":
        return to_required_str(period)
    return str(value)


def build_sale_record(row: Mapping[str, Any], period: Optional[str] = None) -> DteSaleRecord:
    """Build a sale record from a row with canonical field names."""
    return DteSaleRecord(
        register_number=to_int(row.get("register_number")),
        document_type=to_int(row.get("document_type"), DEFAULT_SALE_DOCUMENT_TYPE),
        sale_type=to_required_str(row.get("sale_type"), DEFAULT_SALE_TYPE),
        client_rut=to_required_str(row.get("client_rut")),
        client_name=to_required_str(row.get("client_name")),
        folio=to_required_str(row.get("folio")),
        document_date=parse_date(row.get("document_date")),
        receipt_date=parse_date(row.get("receipt_date")),
        receipt_acknowledge_date=parse_date(row.get("receipt_acknowledge_date")),
        claim_date=parse_date(row.get("claim_date")),
        period=_period(row, period),
        exempt_amount=to_decimal_or_zero(row.get("exempt_amount")),
        net_amount=to_decimal_or_zero(row.get("net_amount")),
        iva_amount=to_decimal_or_zero(row.get("iva_amount")),
        total_amount=to_decimal_or_zero(row.get("total_amount")),
        total_retained_iva=to_decimal_or_zero(row.get("total_retained_iva")),
        partial_retained_iva=to_decimal_or_zero(row.get("partial_retained_iva")),
        non_retained_iva=to_decimal_or_zero(row.get("non_retained_iva")),
        own_iva=to_decimal_or_zero(row.get("own_iva")),
        third_party_iva=to_decimal_or_zero(row.get("third_party_iva")),
        late_iva=to_decimal_or_zero(row.get("late_iva")),
        emitter_rut=to_optional_str(row.get("emitter_rut")),
        commission_net_amount=to_decimal_or_zero(row.get("commission_net_amount")),
        commission_exempt_amount=to_decimal_or_zero(row.get("commission_exempt_amount")),
        commission_iva=to_decimal_or_zero(row.get("commission_iva")),
        reference_doc_type=to_optional_str(row.get("reference_doc_type")),
        reference_doc_folio=to_optional_str(row.get("reference_doc_folio")),
        foreign_buyer_identifier=to_optional_str(row.get("foreign_buyer_identifier")),
        foreign_buyer_nationality=to_optional_str(row.get("foreign_buyer_nationality")),
        constructor_credit_amount=to_decimal_or_zero(row.get("constructor_credit_amount")),
        free_trade_zone_amount=to_decimal_or_zero(row.get("free_trade_zone_amount")),
        container_guarantee_amount=to_decimal_or_zero(row.get("container_guarantee_amount")),
        non_billable_amount=to_decimal_or_zero(row.get("non_billable_amount")),
        international_transport_amount=to_decimal_or_zero(row.get("international_transport_amount")),
        non_cost_sale_indicator=to_int(row.get("non_cost_sale_indicator")),
        periodic_service_indicator=to_int(row.get("periodic_service_indicator")),
        total_period_amount=to_decimal_or_zero(row.get("total_period_amount")),
        national_transport_passage_amount=to_decimal_or_zero(row.get("national_transport_passage_amount")),
        internal_number=to_optional_int(row.get("internal_number")),
        branch_code=to_optional_str(row.get("branch_code")),
        origin=to_required_str(row.get("origin"), DEFAULT_SALE_ORIGIN),
        informative_note=to_optional_str(row.get("informative_note")),
        payment_note=to_optional_str(row.get("payment_note")),
        notes=to_optional_str(row.get("notes")),
    )


def build_purchase_record(row: Mapping[str, Any], period: Optional[str] = None) -> DtePurchaseRecord:
    """Build a purchase record from a row with canonical field names."""
    return DtePurchaseRecord(
        register_number=to_int(row.get("register_number")),
        document_type=to_int(row.get("document_type"), DEFAULT_PURCHASE_DOCUMENT_TYPE),
        purchase_type=to_required_str(row.get("purchase_type"), DEFAULT_PURCHASE_TYPE),
        provider_rut=to_required_str(row.get("provider_rut")),
        provider_name=to_required_str(row.get("provider_name")),
        folio=to_required_str(row.get("folio")),
        document_date=parse_date(row.get("document_date")),
        receipt_date=parse_date(row.get("receipt_date")),
        acknowledge_date=parse_date(row.get("acknowledge_date")),
        period=_period(row, period),
        exempt_amount=to_decimal_or_zero(row.get("exempt_amount")),
        net_amount=to_decimal_or_zero(row.get("net_amount")),
        recoverable_iva=to_decimal_or_zero(row.get("recoverable_iva")),
        non_recoverable_iva=to_decimal_or_zero(row.get("non_recoverable_iva")),
        non_recoverable_iva_code=to_optional_str(row.get("non_recoverable_iva_code")),
        total_amount=to_decimal_or_zero(row.get("total_amount")),
        fixed_asset_net_amount=to_decimal_or_zero(row.get("fixed_asset_net_amount")),
        common_use_iva=to_decimal_or_zero(row.get("common_use_iva")),
        non_creditable_tax=to_decimal_or_zero(row.get("non_creditable_tax")),
        non_retained_iva=to_decimal_or_zero(row.get("non_retained_iva")),
        pure_tobacco=to_decimal_or_zero(row.get("pure_tobacco")),
        cigarette_tobacco=to_decimal_or_zero(row.get("cigarette_tobacco")),
        elaborated_tobacco=to_decimal_or_zero(row.get("elaborated_tobacco")),
        other_tax_code=to_optional_str(row.get("other_tax_code")),
        other_tax_amount=to_decimal_or_zero(row.get("other_tax_amount")),
        other_tax_rate=to_optional_decimal(row.get("other_tax_rate")),
        reference_doc_note=to_optional_str(row.get("reference_doc_note")),
        notes=to_optional_str(row.get("notes")),
    )


def normalize_row(
    raw_row: Mapping[str, Any],
    doc_type: DocumentType,
    period: Optional[str] = None,
    origin: Optional[str] = None,
) -> CanonicalRecord:
    """Header normalization followed by value coercion.

    Args:
        raw_row: Row keyed by raw column labels
        doc_type: Document family of the row
        period: Unit period, used when the row carries none
        origin: Sales origin used when the row carries none

    Returns:
        DteSaleRecord or DtePurchaseRecord
    """
    row = normalize_headers(raw_row, doc_type)
    if doc_type is DocumentType.SALES:
        if origin and not row.get("origin"):
            row["origin"] = origin
        return build_sale_record(row, period)
    return build_purchase_record(row, period)
