from baskt_querier.queriers.access import AccessQuerier
from baskt_querier.queriers.asset import AssetQuerier
from baskt_querier.queriers.baskt import BasktQuerier
from baskt_querier.queriers.fee_event import FeeEventQuerier
from baskt_querier.queriers.history import HistoryQuerier
from baskt_querier.queriers.metrics import MetricsQuerier
from baskt_querier.queriers.order import OrderQuerier
from baskt_querier.queriers.pool import PoolQuerier
from baskt_querier.queriers.position import PositionQuerier
from baskt_querier.queriers.price import PriceQuerier
from baskt_querier.queriers.withdraw_queue import WithdrawQueueQuerier

__all__ = [
    "AccessQuerier",
    "AssetQuerier",
    "BasktQuerier",
    "FeeEventQuerier",
    "HistoryQuerier",
    "MetricsQuerier",
    "OrderQuerier",
    "PoolQuerier",
    "PositionQuerier",
    "PriceQuerier",
    "WithdrawQueueQuerier",
]
