from .auth import User, AccessToken
from .catalog import Product, CartItem, PaymentMethod
from .qr import QRLoginSession
from .sales import Transaction, TransactionItem
from .nfc import NFCEvent, NFCPaymentLock

__all__ = [
    'User', 'AccessToken',
    'Product', 'CartItem', 'PaymentMethod',
    'QRLoginSession',
    'Transaction', 'TransactionItem',
    'NFCEvent', 'NFCPaymentLock',
]
