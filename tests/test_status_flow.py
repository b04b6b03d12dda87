import unittest

from sourcing_engine.domain.models import (
    OrderLink,
    OrderStatus,
    RequisitionLine,
    RequisitionStatus,
    ReviewStatus,
)
from sourcing_engine.procurement.status_flow import (
    computed_requisition_status,
    order_transition_allowed,
    review_transition_allowed,
    rolled_up_status,
)


def _line(line_no: int, status: ReviewStatus, linked: bool = False) -> RequisitionLine:
    link = OrderLink(po_id="po-1", po_number="PO00000001") if linked else None
    return RequisitionLine(line_no=line_no, material_id="mat-1", quantity=1, review_status=status, order_link=link)


class ReviewTransitionTest(unittest.TestCase):
    def test_forward_moves_allowed(self) -> None:
        self.assertTrue(review_transition_allowed(ReviewStatus.PENDING, ReviewStatus.REVIEWED))
        self.assertTrue(review_transition_allowed(ReviewStatus.REVIEWED, ReviewStatus.RFQ_PROCESS))
        self.assertTrue(review_transition_allowed(ReviewStatus.RFQ_PROCESS, ReviewStatus.PROCESSED))

    def test_backward_moves_rejected(self) -> None:
        self.assertFalse(review_transition_allowed(ReviewStatus.PROCESSED, ReviewStatus.REVIEWED))
        self.assertFalse(review_transition_allowed(ReviewStatus.RFQ_PROCESS, ReviewStatus.REVIEWED))

    def test_delink_is_the_only_way_back(self) -> None:
        self.assertTrue(review_transition_allowed(ReviewStatus.RFQ_PROCESS, ReviewStatus.REVIEWED, delink=True))
        self.assertFalse(review_transition_allowed(ReviewStatus.PROCESSED, ReviewStatus.REVIEWED, delink=True))


class OrderTransitionTest(unittest.TestCase):
    def test_allowed(self) -> None:
        self.assertTrue(order_transition_allowed(OrderStatus.CREATED, OrderStatus.ISSUED))
        self.assertTrue(order_transition_allowed(OrderStatus.ISSUED, OrderStatus.REJECTED))
        self.assertTrue(order_transition_allowed(OrderStatus.REJECTED, OrderStatus.ISSUED))

    def test_terminal_statuses(self) -> None:
        self.assertFalse(order_transition_allowed(OrderStatus.CLOSED, OrderStatus.ISSUED))
        self.assertFalse(order_transition_allowed(OrderStatus.CANCELLED, OrderStatus.CREATED))


class RequisitionRollupTest(unittest.TestCase):
    def test_computed_status(self) -> None:
        self.assertIs(
            computed_requisition_status([_line(10, ReviewStatus.PENDING)]),
            RequisitionStatus.CREATED,
        )
        self.assertIs(
            computed_requisition_status([_line(10, ReviewStatus.REVIEWED), _line(20, ReviewStatus.PENDING)]),
            RequisitionStatus.IN_PROCESS,
        )
        self.assertIs(
            computed_requisition_status([_line(10, ReviewStatus.PROCESSED), _line(20, ReviewStatus.PROCESSED)]),
            RequisitionStatus.PROCESSED,
        )
        self.assertIs(
            computed_requisition_status([_line(10, ReviewStatus.PROCESSED, linked=True)]),
            RequisitionStatus.LINKED,
        )

    def test_rollup_never_regresses_without_permission(self) -> None:
        lines = [_line(10, ReviewStatus.PROCESSED)]
        self.assertIs(rolled_up_status(RequisitionStatus.LINKED, lines), RequisitionStatus.LINKED)
        self.assertIs(
            rolled_up_status(RequisitionStatus.LINKED, lines, allow_regression=True),
            RequisitionStatus.PROCESSED,
        )

    def test_linked_line_must_be_processed(self) -> None:
        with self.assertRaises(ValueError):
            _line(10, ReviewStatus.REVIEWED, linked=True)


if __name__ == "__main__":
    unittest.main()
