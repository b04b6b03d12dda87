from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sourcing_engine.domain.models import Thresholds, ViolationType


MIN_COMPETITIVE_QUOTES = 3


class ThresholdRule(str, Enum):
    NONE = "NONE"
    THREE_QUOTES = "THREE_QUOTES"
    TENDER = "TENDER"


@dataclass(frozen=True)
class ThresholdEvaluation:
    required: ThresholdRule
    satisfied: bool
    threshold_limit: float = 0.0
    quote_count: int = 0

    @property
    def violation_type(self) -> ViolationType | None:
        if self.satisfied:
            return None
        if self.required is ThresholdRule.TENDER:
            return ViolationType.THRESHOLD_EXCEEDED
        return ViolationType.INSUFFICIENT_QUOTES

    def to_payload(self) -> dict:
        return {
            "required": self.required.value,
            "satisfied": self.satisfied,
            "threshold_limit": self.threshold_limit,
            "quote_count": self.quote_count,
        }


def evaluate(award_value: float, quote_count: int, thresholds: Thresholds) -> ThresholdEvaluation:
    """Decide which competition rule an award of this value falls under.

    A threshold of zero or less is switched off. A formal tender runs outside
    this engine, so the TENDER rule is never satisfied here and always needs a
    justified exception.
    """
    value = float(award_value or 0)
    count = max(0, int(quote_count or 0))
    tender_limit = float(thresholds.tender_threshold or 0)
    three_quote_limit = float(thresholds.three_quote_threshold or 0)

    if tender_limit > 0 and value >= tender_limit:
        return ThresholdEvaluation(
            required=ThresholdRule.TENDER,
            satisfied=False,
            threshold_limit=tender_limit,
            quote_count=count,
        )
    if three_quote_limit > 0 and value >= three_quote_limit:
        return ThresholdEvaluation(
            required=ThresholdRule.THREE_QUOTES,
            satisfied=count >= MIN_COMPETITIVE_QUOTES,
            threshold_limit=three_quote_limit,
            quote_count=count,
        )
    return ThresholdEvaluation(required=ThresholdRule.NONE, satisfied=True, quote_count=count)
