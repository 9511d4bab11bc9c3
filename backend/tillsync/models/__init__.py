from .tenancy import Business, BusinessUser, Branch
from .auth import User, Role, UserRole, Permission, RolePermission, UserPermissionOverride
from .catalog import Product, Variant, Unit, Barcode, Batch, PriceList, PriceListItem, Customer, Supplier
from .inventory import StockSnapshot, StockMovement
from .sales import Sale, SaleLine, SalePayment, DocumentSequence
from .purchasing import Purchase, PurchaseLine
from .approvals import Approval
from .settings import BusinessSettings
from .audit import AuditEvent
from .offline import OfflineDevice, OfflineAction

__all__ = [
    'Business', 'BusinessUser', 'Branch',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'UserPermissionOverride',
    'Product', 'Variant', 'Unit', 'Barcode', 'Batch', 'PriceList', 'PriceListItem',
    'Customer', 'Supplier',
    'StockSnapshot', 'StockMovement',
    'Sale', 'SaleLine', 'SalePayment', 'DocumentSequence',
    'Purchase', 'PurchaseLine',
    'Approval',
    'BusinessSettings',
    'AuditEvent',
    'OfflineDevice', 'OfflineAction',
]
