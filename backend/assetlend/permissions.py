# Overview: Role and permission definitions for the lending core.
# Each permission is defined as: (code, name, description)

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_STORE_KEEPER = "store_keeper"
ROLE_EMPLOYEE = "employee"
ROLE_DELIVERY_STAFF = "delivery_staff"

ROLES = (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_STORE_KEEPER,
    ROLE_EMPLOYEE,
    ROLE_DELIVERY_STAFF,
)


PERMISSION_DEFINITIONS = [
    (
        "REQUEST_BORROW",
        "Request Borrow",
        "Create borrow requests for available items",
    ),
    (
        "APPROVE_REQUESTS",
        "Approve Requests",
        "Approve or reject pending borrow requests",
    ),
    (
        "RECEIVE_RETURNS",
        "Receive Returns",
        "Check in returned items on behalf of any borrower",
    ),
    (
        "TRANSFER_STOCK",
        "Transfer Stock",
        "Move item stock between stores",
    ),
    (
        "MANAGE_ITEMS",
        "Manage Items",
        "Create and delete items, correct stock, change item status",
    ),
    (
        "VIEW_INVENTORY",
        "View Inventory",
        "View items, stock levels and low-stock alerts",
    ),
    (
        "VIEW_TRANSACTIONS",
        "View Transactions",
        "View every user's transactions and the pending queue",
    ),
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "View audit history, statistics and integrity checks",
    ),
    (
        "MANAGE_AUDIT_LOG",
        "Manage Audit Log",
        "Run retention cleanup on audit history",
    ),
    (
        "REPORT_DAMAGE",
        "Report Damage",
        "File damage reports against items",
    ),
    (
        "MANAGE_DAMAGE_REPORTS",
        "Manage Damage Reports",
        "Review and resolve damage reports, view damage statistics",
    ),
    (
        "MANAGE_MAINTENANCE",
        "Manage Maintenance",
        "Schedule, reschedule and cancel item maintenance",
    ),
    (
        "PERFORM_MAINTENANCE",
        "Perform Maintenance",
        "Start and complete scheduled maintenance",
    ),
]

ALL_PERMISSION_CODES = frozenset(code for code, _, _ in PERMISSION_DEFINITIONS)


DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: set(ALL_PERMISSION_CODES),
    ROLE_MANAGER: {
        "REQUEST_BORROW",
        "APPROVE_REQUESTS",
        "VIEW_INVENTORY",
        "VIEW_TRANSACTIONS",
        "VIEW_AUDIT_LOG",
        "MANAGE_AUDIT_LOG",
        "REPORT_DAMAGE",
    },
    ROLE_STORE_KEEPER: {
        "REQUEST_BORROW",
        "APPROVE_REQUESTS",
        "RECEIVE_RETURNS",
        "TRANSFER_STOCK",
        "MANAGE_ITEMS",
        "VIEW_INVENTORY",
        "VIEW_TRANSACTIONS",
        "REPORT_DAMAGE",
        "MANAGE_DAMAGE_REPORTS",
        "MANAGE_MAINTENANCE",
        "PERFORM_MAINTENANCE",
    },
    ROLE_EMPLOYEE: {
        "REQUEST_BORROW",
        "VIEW_INVENTORY",
        "REPORT_DAMAGE",
        "PERFORM_MAINTENANCE",
    },
    ROLE_DELIVERY_STAFF: {
        "TRANSFER_STOCK",
        "VIEW_INVENTORY",
        "REPORT_DAMAGE",
    },
}


def role_has_permission(role: str | None, permission_code: str) -> bool:
    return permission_code in DEFAULT_ROLE_PERMISSIONS.get(role, set())
