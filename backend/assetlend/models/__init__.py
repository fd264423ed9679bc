from .stores import Store
from .auth import User
from .inventory import Item
from .transactions import Transaction
from .damage import Damage
from .maintenance import MaintenanceLog
from .audit import AuditLog

__all__ = [
    'Store',
    'User',
    'Item',
    'Transaction',
    'Damage',
    'MaintenanceLog',
    'AuditLog',
]
