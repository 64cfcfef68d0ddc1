from .enums import (
    OrderStatus, OrderType, OrderSource, PaymentMethod, OrderPaymentStatus,
    PaymentRecordStatus, PaymentKind, SessionStatus, DiscountType, PricingModel,
    TableStatus, ActorRole, TENDER_METHODS,
)
from .orders import Order, OrderItem, OrderEvent
from .payments import PaymentRecord
from .sessions import POSSession, SessionPaymentApplication
from .promotions import PromoCode, PromoCodeRedemption
from .delivery import DeliveryChargeConfig
from .tables import DiningTable
from .documents import DocumentSequence

__all__ = [
    'OrderStatus', 'OrderType', 'OrderSource', 'PaymentMethod', 'OrderPaymentStatus',
    'PaymentRecordStatus', 'PaymentKind', 'SessionStatus', 'DiscountType', 'PricingModel',
    'TableStatus', 'ActorRole', 'TENDER_METHODS',
    'Order', 'OrderItem', 'OrderEvent',
    'PaymentRecord',
    'POSSession', 'SessionPaymentApplication',
    'PromoCode', 'PromoCodeRedemption',
    'DeliveryChargeConfig',
    'DiningTable',
    'DocumentSequence',
]
