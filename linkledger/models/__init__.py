from .router import Router
from .client import Client
from .payment import Payment
from .wallet_transaction import WalletTransaction
from .network_action import NetworkAction
from .payment_request import PaymentRequest
from .notification_log import NotificationLog
from .setting import Setting
