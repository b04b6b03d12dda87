from __future__ import annotations

from typing import Dict


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "The operation could not be completed.",
        "action_invalid": "This action is not valid.",
        "validation_error": "The request contains invalid data.",
        "not_found": "The requested document was not found.",
        "tenant_required": "A tenant scope is required.",
        "action_not_allowed_for_status": "This action is not allowed for the current status.",
        "transaction_conflict": "The documents changed while saving. Please retry.",
        "referenced_document_missing": "A referenced document no longer exists.",
        "items_required": "At least one line is required.",
        "material_required": "Each line needs a material.",
        "quantity_invalid": "Quantity must be greater than zero.",
        "material_duplicate": "Each material can appear on only one line of a requisition.",
        "price_invalid": "Prices cannot be negative.",
        "discount_invalid": "Discounts must be between 0 and 100 percent.",
        "tax_invalid": "Tax percentage cannot be negative.",
        "line_not_found": "The requisition line was not found.",
        "review_transition_invalid": "The line cannot move to that review status.",
        "line_already_processed": "The line has already been processed.",
        "line_not_processed": "Only processed lines can be added to an order.",
        "line_already_linked": "The line is already linked to a purchase order.",
        "line_not_linked": "The line is not linked to a purchase order.",
        "line_not_in_quote": "The line is not linked to a quote.",
        "sourcing_vendor_required": "A vendor is required to accept sourcing.",
        "sourcing_price_required": "A price is required to accept sourcing.",
        "vendor_mismatch": "The line vendor does not match the purchase order vendor.",
        "duplicate_order_item": "The order already contains this requisition material.",
        "no_eligible_lines": "No processed, unlinked lines for this vendor were found.",
        "order_not_editable": "Only created or rejected orders accept item changes.",
        "order_transition_invalid": "The order cannot move to that status.",
        "rfq_not_editable": "The RFQ no longer accepts changes.",
        "rfq_already_closed": "The RFQ is already closed or awarded.",
        "rfq_already_awarded": "The RFQ has already been awarded.",
        "supplier_already_invited": "The supplier is already invited to this RFQ.",
        "quote_not_draft": "Only draft quotes can be changed.",
        "quote_not_open_for_response": "Responses can only be recorded for draft or sent quotes.",
        "quote_not_received": "Only received quotes can be awarded.",
        "confirmation_mismatch": "The confirmation number does not match the RFQ number.",
        "quote_item_unknown": "The response references an item that is not on the quote.",
        "quoted_price_required": "Every quote item needs a unit price.",
        "lead_time_unit_invalid": "Lead time unit must be Days, Weeks or Months.",
        "award_reason_invalid": "Select a valid award reason.",
        "justification_required": "A justification is required to proceed with this award.",
        "thresholds_invalid": "Thresholds must be numbers greater than or equal to zero.",
        "vendor_required": "A vendor is required.",
        "vendor_name_required": "A vendor name is required.",
        "vendor_not_found": "The vendor does not exist.",
        "material_not_found": "The material does not exist.",
        "requisition_not_found": "The requisition does not exist.",
        "rfq_not_found": "The RFQ does not exist.",
        "quote_not_found": "The quote does not exist.",
        "order_not_found": "The purchase order does not exist.",
        "category_mismatch": "The line category does not match the RFQ category.",
        "line_already_in_quote": "The line is already on this quote.",
        "quote_cannot_source_line": "The quote has no priced item for this line.",
        "status_invalid": "Unknown status.",
    },
    "success": {
        "requisition_created": "Requisition created.",
        "line_reviewed": "Line review updated.",
        "sourcing_accepted": "Sourcing accepted.",
        "rfq_created": "RFQ created.",
        "supplier_invited": "Supplier invited.",
        "quote_sent": "Quote sent to supplier.",
        "quote_response_recorded": "Quote response recorded.",
        "quote_awarded": "Quote awarded.",
        "purchase_order_created": "Purchase order created.",
        "line_linked": "Line linked to purchase order.",
        "line_unlinked": "Line removed from purchase order.",
        "order_status_changed": "Purchase order status updated.",
        "thresholds_saved": "Thresholds saved.",
        "vendor_registered": "Vendor registered.",
        "rfq_closed": "RFQ closed.",
        "requisition_linked": "Requisition linked to purchase order.",
        "line_added_to_quote": "Line added to the quote.",
        "line_removed_from_quote": "Line removed from the quote.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)
