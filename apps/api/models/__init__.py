"""Models package."""

from .user import User
from .distribution import Distribution
from .point_ledger import PointLedger
from .point_dedupe import PointDedupe
from .download_stat import DownloadStat
from .monitor_record import MonitorRecord
from .recharge_order import RechargeOrder
