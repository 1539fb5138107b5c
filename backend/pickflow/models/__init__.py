"""Aggregate model imports for Alembic auto-detection and create_all."""

from pickflow.models.activity_log import ActivityLog  # noqa: F401
from pickflow.models.batch import InventoryBatch  # noqa: F401
from pickflow.models.delivery_run import DeliveryRun, LoadItem  # noqa: F401
from pickflow.models.order import Order, OrderLine, OrderStatus  # noqa: F401
from pickflow.models.pick_list import BatchPick, PickItem, PickList  # noqa: F401
from pickflow.models.sequence_counter import SequenceCounter  # noqa: F401
