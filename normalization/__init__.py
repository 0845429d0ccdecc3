"""Normalization of raw registry rows into canonical records."""

from normalization.delimited import detect_delimiter, parse_delimited
from normalization.labels import LABEL_TABLE, PURCHASE_OVERRIDES, normalize_headers, normalize_label
from normalization.records import (
    CanonicalRecord,
    DtePurchaseRecord,
    DteSaleRecord,
    build_purchase_record,
    build_sale_record,
    normalize_row,
)
from normalization.values import (
    parse_amount,
    parse_date,
    to_decimal_or_zero,
    to_int,
    to_optional_str,
    to_required_str,
)

__all__ = [
    "LABEL_TABLE",
    "PURCHASE_OVERRIDES",
    "CanonicalRecord",
    "DtePurchaseRecord",
    "DteSaleRecord",
    "build_purchase_record",
    "build_sale_record",
    "detect_delimiter",
    "normalize_headers",
    "normalize_label",
    "normalize_row",
    "parse_amount",
    "parse_date",
    "parse_delimited",
    "to_decimal_or_zero",
    "to_int",
    "to_optional_str",
    "to_required_str",
]
