from .identity import User, AsoDealerMapping
from .auth import OtpCode, OtpRateLimit
from .stock import Product, StockDispatch, BarbenderSale, Purchase, DailyStock, BalanceEntry
from .rewards import Reward
from .security import SecurityEvent

__all__ = [
    'User', 'AsoDealerMapping',
    'OtpCode', 'OtpRateLimit',
    'Product', 'StockDispatch', 'BarbenderSale', 'Purchase', 'DailyStock', 'BalanceEntry',
    'Reward',
    'SecurityEvent',
]
