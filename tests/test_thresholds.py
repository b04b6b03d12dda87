import unittest

from sourcing_engine.domain.models import Thresholds, ViolationType
from sourcing_engine.procurement.thresholds import ThresholdRule, evaluate


class ThresholdEvaluationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.thresholds = Thresholds(three_quote_threshold=10000, tender_threshold=50000)

    def test_below_three_quote_threshold_needs_nothing(self) -> None:
        evaluation = evaluate(9999.99, 1, self.thresholds)
        self.assertIs(evaluation.required, ThresholdRule.NONE)
        self.assertTrue(evaluation.satisfied)
        self.assertIsNone(evaluation.violation_type)

    def test_two_quotes_above_three_quote_threshold_is_unsatisfied(self) -> None:
        evaluation = evaluate(12000, 2, self.thresholds)
        self.assertIs(evaluation.required, ThresholdRule.THREE_QUOTES)
        self.assertFalse(evaluation.satisfied)
        self.assertEqual(evaluation.threshold_limit, 10000)
        self.assertIs(evaluation.violation_type, ViolationType.INSUFFICIENT_QUOTES)

    def test_three_quotes_satisfy_rule(self) -> None:
        evaluation = evaluate(12000, 3, self.thresholds)
        self.assertIs(evaluation.required, ThresholdRule.THREE_QUOTES)
        self.assertTrue(evaluation.satisfied)

    def test_tender_is_never_satisfied_in_engine(self) -> None:
        evaluation = evaluate(50000, 10, self.thresholds)
        self.assertIs(evaluation.required, ThresholdRule.TENDER)
        self.assertFalse(evaluation.satisfied)
        self.assertIs(evaluation.violation_type, ViolationType.THRESHOLD_EXCEEDED)
        self.assertEqual(evaluation.threshold_limit, 50000)

    def test_zero_thresholds_are_disabled(self) -> None:
        evaluation = evaluate(1_000_000, 0, Thresholds())
        self.assertIs(evaluation.required, ThresholdRule.NONE)
        self.assertTrue(evaluation.satisfied)

    def test_payload_shape(self) -> None:
        payload = evaluate(12000, 2, self.thresholds).to_payload()
        self.assertEqual(
            payload,
            {"required": "THREE_QUOTES", "satisfied": False, "threshold_limit": 10000.0, "quote_count": 2},
        )


if __name__ == "__main__":
    unittest.main()
