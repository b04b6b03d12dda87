import unittest
from datetime import date

from sourcing_engine.domain.contracts import ManualSourcingInput
from sourcing_engine.domain.models import (
    LeadTimeUnit,
    Material,
    Quote,
    QuoteItem,
    QuoteStatus,
    RequisitionLine,
    SourcingMethod,
    Vendor,
    VendorSourcingRecord,
)
from sourcing_engine.procurement.sourcing import (
    agreement_is_valid,
    decide_from_quote,
    lead_time_in_days,
    parse_lead_time_unit,
    resolve_sourcing,
)


TODAY = date(2024, 1, 1)


def _material(**fields) -> Material:
    values = {"id": "mat-1", "code": "M-1", "total_lead_time_days": 21, "last_purchase_price": 9.5, "currency": "USD"}
    values.update(fields)
    return Material(**values)


def _record(vendor_id: str, **fields) -> VendorSourcingRecord:
    return VendorSourcingRecord(material_id="mat-1", vendor_id=vendor_id, vendor_name=f"Vendor {vendor_id}", **fields)


def _awarded_quote(quote_id: str, vendor_id: str, price: float, awarded_at: str) -> Quote:
    return Quote(
        id=quote_id,
        quote_number=f"RFQ000000001-{vendor_id}",
        rfq_id="rfq-1",
        rfq_number="RFQ000000001",
        vendor_id=vendor_id,
        vendor_name=f"Vendor {vendor_id}",
        status=QuoteStatus.AWARDED,
        currency="EUR",
        awarded_at=awarded_at,
        items=(
            QuoteItem(
                material_id="mat-1",
                quantity=5,
                quoted_unit_price=price,
                quoted_discount=2,
                lead_time_value=2,
                lead_time_unit=LeadTimeUnit.WEEKS,
            ),
        ),
    )


LINE = RequisitionLine(line_no=10, material_id="mat-1", quantity=5)


class SourcingResolverTest(unittest.TestCase):
    def test_active_agreement_wins(self) -> None:
        records = [
            _record("v-pref", priority=1, price=8.0),
            _record(
                "v-agr",
                priority=2,
                price=10.0,
                has_agreement=True,
                agreement_status="Active",
                agreement_ref="AGR-7",
                valid_from="2023-06-01",
                valid_to="2024-06-01",
            ),
        ]
        decision = resolve_sourcing(LINE, material=_material(), records=records, quotes=[], today=TODAY)
        self.assertIs(decision.sourcing_method, SourcingMethod.AGREEMENT)
        self.assertEqual(decision.vendor_id, "v-agr")
        self.assertEqual(decision.price, 10.0)
        self.assertEqual(decision.sourcing_ref, "AGR-7")

    def test_expired_agreement_falls_back_to_preferred_supplier(self) -> None:
        records = [
            _record("v-agr", priority=2, price=10.0, has_agreement=True, agreement_status="Active", valid_to="2023-12-31"),
            _record("v-pref", priority=1, price=8.0, lead_time_days=4),
        ]
        decision = resolve_sourcing(LINE, material=_material(), records=records, quotes=[], today=TODAY)
        self.assertIs(decision.sourcing_method, SourcingMethod.PREFERRED_SUPPLIER)
        self.assertEqual(decision.vendor_id, "v-pref")
        self.assertEqual(decision.lead_time_days, 4)

    def test_latest_awarded_quote_used_when_no_records(self) -> None:
        quotes = [
            _awarded_quote("q-old", "v-1", 7.0, "2023-01-01T00:00:00Z"),
            _awarded_quote("q-new", "v-2", 6.5, "2023-11-01T00:00:00Z"),
        ]
        decision = resolve_sourcing(LINE, material=_material(), records=[], quotes=quotes, today=TODAY)
        self.assertIs(decision.sourcing_method, SourcingMethod.RFQ)
        self.assertEqual(decision.quote_id, "q-new")
        self.assertEqual(decision.price, 6.5)
        self.assertEqual(decision.lead_time_days, 14)
        self.assertEqual(decision.currency, "EUR")

    def test_manual_fallback_seeds_last_purchase_price(self) -> None:
        decision = resolve_sourcing(LINE, material=_material(), records=[], quotes=[], today=TODAY)
        self.assertIs(decision.sourcing_method, SourcingMethod.MANUAL)
        self.assertIsNone(decision.vendor_id)
        self.assertEqual(decision.price, 9.5)
        self.assertEqual(decision.lead_time_days, 21)

    def test_manual_price_overrides_records(self) -> None:
        vendor = Vendor(id="v-pref", vendor_code="V00001", name="Preferred", currency="GBP")
        records = [_record("v-pref", priority=1, price=8.0, tax_percent=5)]
        decision = resolve_sourcing(
            LINE,
            material=_material(),
            records=records,
            quotes=[],
            today=TODAY,
            vendor=vendor,
            manual=ManualSourcingInput(price=7.25, lead_time_days=3),
        )
        self.assertIs(decision.sourcing_method, SourcingMethod.MANUAL)
        self.assertEqual(decision.vendor_id, "v-pref")
        self.assertEqual(decision.price, 7.25)
        self.assertEqual(decision.lead_time_days, 3)
        self.assertEqual(decision.tax_percent, 5.0)

    def test_vendor_filter_restricts_records(self) -> None:
        vendor = Vendor(id="v-other", vendor_code="V00002", name="Other")
        records = [_record("v-pref", priority=1, price=8.0), _record("v-other", priority=3, price=11.0)]
        decision = resolve_sourcing(
            LINE, material=_material(), records=records, quotes=[], today=TODAY, vendor=vendor
        )
        self.assertIs(decision.sourcing_method, SourcingMethod.MANUAL)
        self.assertEqual(decision.vendor_id, "v-other")
        self.assertEqual(decision.price, 11.0)

    def test_decide_from_received_quote_requires_routing(self) -> None:
        quote = Quote(
            id="q-1",
            quote_number="RFQ000000001-V00001",
            rfq_id="rfq-1",
            rfq_number="RFQ000000001",
            vendor_id="v-1",
            status=QuoteStatus.SENT,
            items=(QuoteItem(material_id="mat-1", quantity=5, requisition_id="pr-1", line_no=10),),
        )
        self.assertIsNone(decide_from_quote(LINE, quote, records=[], requisition_id="pr-1"))


class LeadTimeTest(unittest.TestCase):
    def test_units(self) -> None:
        self.assertEqual(lead_time_in_days(3, LeadTimeUnit.MONTHS), 90)
        self.assertEqual(lead_time_in_days(3, None), 3)
        self.assertIsNone(lead_time_in_days(None, LeadTimeUnit.WEEKS))

    def test_parse_unit(self) -> None:
        self.assertIs(parse_lead_time_unit("weeks"), LeadTimeUnit.WEEKS)
        self.assertIsNone(parse_lead_time_unit(""))
        with self.assertRaises(ValueError):
            parse_lead_time_unit("fortnights")

    def test_agreement_requires_active_status(self) -> None:
        self.assertFalse(agreement_is_valid(_record("v", has_agreement=True, agreement_status="Draft"), TODAY))
        self.assertTrue(agreement_is_valid(_record("v", has_agreement=True, agreement_status="Active"), TODAY))


if __name__ == "__main__":
    unittest.main()
