from .auth import User, SessionToken
from .security import SecurityEvent
from .billing import Plan, Subscription, TokenUsage
from .catalog import Product, ProductCategory
from .sales import Quote, Invoice, DiscountRequest, DocumentSequence
from .accounting import Account, AccountTransaction, Expense, VatReturn

__all__ = [
    'User', 'SessionToken', 'SecurityEvent',
    'Plan', 'Subscription', 'TokenUsage',
    'Product', 'ProductCategory',
    'Quote', 'Invoice', 'DiscountRequest', 'DocumentSequence',
    'Account', 'AccountTransaction', 'Expense', 'VatReturn',
]
