from keystone_access.models.expense import Expense
from keystone_access.models.guest_token import GuestToken
from keystone_access.models.permission import AuditLog, CategoryPermission
from keystone_access.models.report import Category, Report
from keystone_access.models.user import User

__all__ = [
    # Workspaces and the category tree
    "Report",
    "Category",
    # Sharing
    "CategoryPermission",
    "GuestToken",
    # Expenses
    "Expense",
    # Users
    "User",
    # Audit
    "AuditLog",
]
