from .tenancy import Tenant
from .auth import User, SessionToken
from .customers import Customer
from .orders import Order, OrderItem
from .cylinders import Cylinder
from .finance import Transaction, EmployeeWallet, CompanyLedgerEntry, SettlementStep, Expense

__all__ = [
    'Tenant',
    'User', 'SessionToken',
    'Customer',
    'Order', 'OrderItem',
    'Cylinder',
    'Transaction', 'EmployeeWallet', 'CompanyLedgerEntry', 'SettlementStep', 'Expense',
]
