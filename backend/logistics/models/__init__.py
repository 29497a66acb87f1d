from .parties import Driver, Client
from .orders import Order, OrderEvent
from .cashbox import Cashbox, CashboxEntry, ExchangeRate, CASHBOX_ID

__all__ = [
    'Driver', 'Client',
    'Order', 'OrderEvent',
    'Cashbox', 'CashboxEntry', 'ExchangeRate', 'CASHBOX_ID',
]
