from .counter_repository import CounterRepository
from .exception_notice_repository import ExceptionNoticeRepository
from .master_data_repository import MasterDataRepository
from .purchase_order_repository import PurchaseOrderRepository
from .quote_repository import QuoteRepository
from .requisition_repository import RequisitionRepository
from .rfq_repository import RfqRepository
from .status_event_repository import StatusEventRepository

__all__ = [
    "CounterRepository",
    "ExceptionNoticeRepository",
    "MasterDataRepository",
    "PurchaseOrderRepository",
    "QuoteRepository",
    "RequisitionRepository",
    "RfqRepository",
    "StatusEventRepository",
]
