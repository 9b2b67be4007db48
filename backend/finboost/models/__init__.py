from .cycles import User, CycleSetting, CycleWinnerSelection
from .payouts import PayoutBatch, PayoutBatchItem, UserRewardRecord

__all__ = [
    'User', 'CycleSetting', 'CycleWinnerSelection',
    'PayoutBatch', 'PayoutBatchItem', 'UserRewardRecord',
]
