from .batch_allocator import BatchAllocator, select_batch
from .controller import FulfillmentSessionController
from .model import Allocation, FulfillmentSelection, Reconciliation
from .reconciler import fulfillable_lines, reconcile, reconcile_order
