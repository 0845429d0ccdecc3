"""Column label normalization.

Registry exports and SII "Libro de Compras/Ventas" files name the same
column in many ways (Spanish/English, with or without accents, underscores,
abbreviations). `LABEL_TABLE` maps every observed variant, lower-cased and
trimmed, onto one canonical field name.

Examples:
    "N° Documento"   → "folio"
    "Monto Neto"     → "net_amount"
    " Monto IVA"     → "iva_amount"
    "Razón Social"   → "client_name" (sales) / "provider_name" (purchases)
"""

from typing import Dict, Mapping, Optional

from connectors.haulmer.models import DocumentType


LABEL_TABLE: Dict[str, str] = {
    # Register number
    "n°": "register_number",
    "nº": "register_number",
    "no": "register_number",
    "nro": "register_number",
    "registro": "register_number",
    "register number": "register_number",
    "n° registro": "register_number",
    "nº registro": "register_number",
    "registro número": "register_number",
    "registro numero": "register_number",
    "numero registro": "register_number",
    "número registro": "register_number",

    # Document type
    "tipo de documento": "document_type",
    "tipo documento": "document_type",
    "tipo_documento": "document_type",
    "tipo doc": "document_type",
    "tipo doc.": "document_type",
    "document type": "document_type",

    # Sale type
    "tipo venta": "sale_type",
    "tipo de venta": "sale_type",
    "tipo_venta": "sale_type",
    "sale type": "sale_type",
    "tipo": "sale_type",

    # Purchase type
    "tipo compra": "purchase_type",
    "tipo de compra": "purchase_type",
    "tipo_compra": "purchase_type",
    "purchase type": "purchase_type",

    # Client
    "rut cliente": "client_rut",
    "rut_cliente": "client_rut",
    "cliente rut": "client_rut",
    "rut del cliente": "client_rut",
    "client rut": "client_rut",
    "rut": "client_rut",

    "razón social": "client_name",
    "razon social": "client_name",
    "razon_social": "client_name",
    "nombre cliente": "client_name",
    "nombre_cliente": "client_name",
    "client name": "client_name",
    "cliente": "client_name",

    # Provider
    "rut proveedor": "provider_rut",
    "rut_proveedor": "provider_rut",
    "rut del proveedor": "provider_rut",
    "proveedor rut": "provider_rut",
    "provider rut": "provider_rut",

    "nombre proveedor": "provider_name",
    "nombre_proveedor": "provider_name",
    "razón social proveedor": "provider_name",
    "razon social proveedor": "provider_name",
    "provider name": "provider_name",
    "proveedor": "provider_name",

    # Folio
    "folio": "folio",
    "numero documento": "folio",
    "número documento": "folio",
    "n° documento": "folio",
    "nº documento": "folio",
    "no documento": "folio",
    "nro documento": "folio",
    "numero folio": "folio",
    "número folio": "folio",
    "numero_documento": "folio",
    "document number": "folio",

    # Dates
    "fecha documento": "document_date",
    "fecha_documento": "document_date",
    "fecha de documento": "document_date",
    "fecha docto": "document_date",
    "fecha docto.": "document_date",
    "fecha emisión": "document_date",
    "fecha emision": "document_date",
    "fecha de emisión": "document_date",
    "fecha de emision": "document_date",
    "issue date": "document_date",
    "fecha": "document_date",

    "fecha recepción": "receipt_date",
    "fecha recepcion": "receipt_date",
    "fecha_recepcion": "receipt_date",
    "fecha de recepción": "receipt_date",
    "fecha de recepcion": "receipt_date",
    "fecha recepción conforme": "receipt_date",
    "fecha recepcion conforme": "receipt_date",
    "receipt date": "receipt_date",

    "fecha acuse recibo": "receipt_acknowledge_date",
    "fecha acuse de recibo": "receipt_acknowledge_date",
    "fecha_acuse_recibo": "receipt_acknowledge_date",
    "acknowledgment date": "receipt_acknowledge_date",

    "fecha reclamo": "claim_date",
    "fecha de reclamo": "claim_date",
    "fecha_reclamo": "claim_date",
    "claim date": "claim_date",

    # Exempt / net / IVA / total
    "monto exento": "exempt_amount",
    "monto_exento": "exempt_amount",
    "monto de exento": "exempt_amount",
    "exempt amount": "exempt_amount",
    "exento": "exempt_amount",

    "monto neto": "net_amount",
    "monto_neto": "net_amount",
    "monto de neto": "net_amount",
    "net amount": "net_amount",
    "neto": "net_amount",

    "monto iva": "iva_amount",
    "monto_iva": "iva_amount",
    "monto de iva": "iva_amount",
    "iva": "iva_amount",
    "impuesto": "iva_amount",
    "tax amount": "iva_amount",

    "monto total": "total_amount",
    "monto_total": "total_amount",
    "monto de total": "total_amount",
    "total amount": "total_amount",
    "total": "total_amount",

    # IVA details (sales)
    "iva retenido total": "total_retained_iva",
    "iva_retenido_total": "total_retained_iva",
    "total retained iva": "total_retained_iva",

    "iva retenido parcial": "partial_retained_iva",
    "iva_retenido_parcial": "partial_retained_iva",
    "partial retained iva": "partial_retained_iva",

    "iva no retenido": "non_retained_iva",
    "iva_no_retenido": "non_retained_iva",
    "non retained iva": "non_retained_iva",

    "iva propio": "own_iva",
    "iva_propio": "own_iva",
    "own iva": "own_iva",

    "iva tercero": "third_party_iva",
    "iva_tercero": "third_party_iva",
    "iva de tercero": "third_party_iva",
    "third party iva": "third_party_iva",

    "iva fuera de plazo": "late_iva",
    "iva_fuera_de_plazo": "late_iva",
    "late iva": "late_iva",

    # Commission
    "rut emisor liquid. factura": "emitter_rut",
    "rut emisor liq. factura": "emitter_rut",
    "rut emisor liquid factura": "emitter_rut",
    "emitter rut": "emitter_rut",

    "neto comisión liquid. factura": "commission_net_amount",
    "neto comision liquid. factura": "commission_net_amount",
    "neto comision liq. factura": "commission_net_amount",
    "commission net amount": "commission_net_amount",

    "exento comisión liquid. factura": "commission_exempt_amount",
    "exento comision liquid. factura": "commission_exempt_amount",
    "exento comision liq. factura": "commission_exempt_amount",
    "commission exempt amount": "commission_exempt_amount",

    "iva comisión liquid. factura": "commission_iva",
    "iva comision liquid. factura": "commission_iva",
    "iva comision liq. factura": "commission_iva",
    "commission iva": "commission_iva",

    # References
    "tipo doc. referencia": "reference_doc_type",
    "tipo doc referencia": "reference_doc_type",
    "reference doc type": "reference_doc_type",

    "folio doc. referencia": "reference_doc_folio",
    "folio doc referencia": "reference_doc_folio",
    "reference doc folio": "reference_doc_folio",

    # Foreign buyer
    "num. ident. receptor extranjero": "foreign_buyer_identifier",
    "num ident receptor extranjero": "foreign_buyer_identifier",
    "foreign buyer identifier": "foreign_buyer_identifier",

    "nacionalidad receptor extranjero": "foreign_buyer_nationality",
    "nacionalidad del receptor extranjero": "foreign_buyer_nationality",
    "foreign buyer nationality": "foreign_buyer_nationality",

    # Special amounts
    "crédito empresa contructora": "constructor_credit_amount",
    "credito empresa contructora": "constructor_credit_amount",
    "crédito empresa constructora": "constructor_credit_amount",
    "credito empresa constructora": "constructor_credit_amount",
    "constructor credit amount": "constructor_credit_amount",

    "impto. zona franca (ley 18211)": "free_trade_zone_amount",
    "impto zona franca (ley 18211)": "free_trade_zone_amount",
    "impto zona franca": "free_trade_zone_amount",
    "free trade zone amount": "free_trade_zone_amount",

    "garantia dep. envases": "container_guarantee_amount",
    "garantía dep. envases": "container_guarantee_amount",
    "garantia dep envases": "container_guarantee_amount",
    "container guarantee amount": "container_guarantee_amount",

    "monto no facturable": "non_billable_amount",
    "non billable amount": "non_billable_amount",

    # Indicators
    "indicador venta sin costo": "non_cost_sale_indicator",
    "non cost sale indicator": "non_cost_sale_indicator",

    "indicador servicio periodico": "periodic_service_indicator",
    "indicador servicio periódico": "periodic_service_indicator",
    "periodic service indicator": "periodic_service_indicator",

    # Totals & transport
    "total monto periodo": "total_period_amount",
    "total monto período": "total_period_amount",
    "total period amount": "total_period_amount",

    "venta pasajes transporte nacional": "national_transport_passage_amount",
    "national transport passage amount": "national_transport_passage_amount",

    "venta pasajes transporte internacional": "international_transport_amount",
    "international transport amount": "international_transport_amount",

    # Internal info
    "numero interno": "internal_number",
    "número interno": "internal_number",
    "internal number": "internal_number",

    "codigo sucursal": "branch_code",
    "código sucursal": "branch_code",
    "branch code": "branch_code",

    "origen": "origin",
    "origin": "origin",

    "nota informativa": "informative_note",
    "informative note": "informative_note",

    "nota pago": "payment_note",
    "payment note": "payment_note",

    "notas": "notes",
    "notes": "notes",

    "periodo": "period",
    "período": "period",
    "period": "period",

    # Other taxes
    "nce o nde sobre fact. de compra": "reference_doc_note",
    "nce o nde sobre fact de compra": "reference_doc_note",
    "nce o nde": "reference_doc_note",

    "codigo otro imp.": "other_tax_code",
    "codigo otro imp": "other_tax_code",
    "código otro impuesto": "other_tax_code",
    "codigo otro impuesto": "other_tax_code",
    "other tax code": "other_tax_code",

    "valor otro imp.": "other_tax_amount",
    "valor otro imp": "other_tax_amount",
    "valor otro impuesto": "other_tax_amount",
    "other tax amount": "other_tax_amount",

    "tasa otro imp.": "other_tax_rate",
    "tasa otro imp": "other_tax_rate",
    "tasa otro impuesto": "other_tax_rate",
    "other tax rate": "other_tax_rate",

    # Purchase IVA
    "monto iva recuperable": "recoverable_iva",
    "monto_iva_recuperable": "recoverable_iva",
    "iva recuperable": "recoverable_iva",
    "recoverable iva": "recoverable_iva",

    "monto iva no recuperable": "non_recoverable_iva",
    "monto_iva_no_recuperable": "non_recoverable_iva",
    "iva no recuperable": "non_recoverable_iva",
    "non recoverable iva": "non_recoverable_iva",

    "código iva no recuperable": "non_recoverable_iva_code",
    "codigo iva no recuperable": "non_recoverable_iva_code",
    "non recoverable iva code": "non_recoverable_iva_code",

    "monto neto activo fijo": "fixed_asset_net_amount",
    "fixed asset net amount": "fixed_asset_net_amount",

    "iva uso común": "common_use_iva",
    "iva uso comun": "common_use_iva",
    "common use iva": "common_use_iva",

    "impto. sin derecho a crédito": "non_creditable_tax",
    "impto. sin derecho a credito": "non_creditable_tax",
    "impto sin derecho a credito": "non_creditable_tax",
    "non creditable tax": "non_creditable_tax",

    "tabacos puros": "pure_tobacco",
    "tabacos cigarrillos": "cigarette_tobacco",
    "tabacos elaborados": "elaborated_tobacco",

    "fecha acuse": "acknowledge_date",
    "fecha_acuse": "acknowledge_date",
}


# Same label, different meaning in purchase books
PURCHASE_OVERRIDES: Dict[str, str] = {
    "rut": "provider_rut",
    "razón social": "provider_name",
    "razon social": "provider_name",
    "razon_social": "provider_name",
    "tipo": "purchase_type",
    "fecha acuse recibo": "acknowledge_date",
    "fecha acuse de recibo": "acknowledge_date",
}


def _fold(label: str) -> str:
    return " ".join(str(label).replace("﻿", "").strip().casefold().split())


def normalize_label(label: str, doc_type: Optional[DocumentType] = None) -> str:
    """Map a raw column label onto its canonical field name.

    Unknown labels are returned unchanged.

    Args:
        label: Raw column label
        doc_type: Document family, for labels whose meaning depends on it

    Returns:
        Canonical field name, or the original label
    """
    folded = _fold(label)
    if doc_type is DocumentType.PURCHASES and folded in PURCHASE_OVERRIDES:
        return PURCHASE_OVERRIDES[folded]
    return LABEL_TABLE.get(folded, label)


def normalize_headers(row: Mapping[str, str], doc_type: Optional[DocumentType] = None) -> Dict[str, str]:
    """Rename every column of a raw row.

    When two raw columns map onto the same field, the first non-empty value
    wins.
    """
    normalized: Dict[str, str] = {}
    for key, value in row.items():
        field_name = normalize_label(key, doc_type)
        if field_name in normalized and normalized[field_name] not in (None, ""):
            continue
        normalized[field_name] = value
    return normalized
