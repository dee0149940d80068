from assistant.models.account import Account
from assistant.models.lead import Lead
from assistant.models.notification import Notification
from assistant.models.transaction import Transaction
from assistant.models.user import User

__all__ = [
    "User",
    "Lead",
    "Transaction",
    "Account",
    "Notification",
]
