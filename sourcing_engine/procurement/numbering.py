from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


# domain -> (prefix, zero-padded width)
COUNTER_FORMATS: Dict[str, Tuple[str, int]] = {
    "purchase_order": ("PO", 8),
    "rfq": ("RFQ", 9),
    "vendor": ("V", 5),
    "exception_notice": ("EX-", 6),
    "requisition": ("PR", 8),
}


@dataclass(frozen=True)
class CounterState:
    domain: str
    value: int = 0
    version: int | None = None

    @property
    def exists(self) -> bool:
        return self.version is not None


def format_number(domain: str, value: int) -> str:
    try:
        prefix, width = COUNTER_FORMATS[domain]
    except KeyError:
        raise ValueError(f"unknown numbering domain: {domain}") from None
    return f"{prefix}{int(value):0{width}d}"


def advance(state: CounterState) -> tuple[CounterState, str]:
    """Return the counter after issuing one number, plus the issued number."""
    next_value = int(state.value) + 1
    return CounterState(domain=state.domain, value=next_value, version=state.version), format_number(
        state.domain, next_value
    )


def quote_number(rfq_number: str, vendor_code: str) -> str:
    return f"{rfq_number}-{vendor_code}"
