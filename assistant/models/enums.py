from enum import Enum


class Platform(str, Enum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    SMS = "sms"


class Domain(str, Enum):
    SALES = "sales"
    FINANCE = "finance"


class LeadStatus(str, Enum):
    NEW = "New"
    CONTACTED = "Contacted"
    REPLIED = "Replied"
    INTERESTED = "Interested"
    WAITING = "Waiting"
    PROPOSAL_SENT = "Proposal Sent"
    CLOSED_WON = "Closed - Won"
    CLOSED_LOST = "Closed - Lost"


CLOSED_LEAD_STATUSES = (LeadStatus.CLOSED_WON.value, LeadStatus.CLOSED_LOST.value)


class TransactionCategory(str, Enum):
    INCOME = "Income"
    FIXED_EXPENSES = "Fixed Expenses"
    VARIABLE_EXPENSES = "Variable Expenses"
    SAVINGS = "Savings"
    INVESTMENT = "Investment"
    DEBT_PAYMENT = "Debt Payment"


EXPENSE_CATEGORIES = (TransactionCategory.FIXED_EXPENSES.value, TransactionCategory.VARIABLE_EXPENSES.value)


class BabylonPrinciple(str, Enum):
    PAY_SELF_FIRST = "Pay Self First"
    CONTROL_SPENDING = "Control Spending"
    MAKE_MONEY_WORK = "Make Money Work"
    GUARD_AGAINST_LOSS = "Guard Against Loss"
    OWN_HOME = "Own Home"
    PLAN_FUTURE = "Plan Future"
    INCREASE_EARNING = "Increase Earning"


class AccountType(str, Enum):
    ASSET = "Asset"
    LIABILITY = "Liability"
    INVESTMENT = "Investment"
    EMERGENCY_FUND = "Emergency Fund"


class NotificationType(str, Enum):
    MORNING = "morning"
    EVENING = "evening"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
