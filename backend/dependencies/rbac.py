"""
RBAC dependencies for FastAPI routes
Role-based access control implemented as dependencies that run after authentication
"""
from fastapi import HTTPException, status, Request
from typing import Any, Iterable, Optional
import logging

logger = logging.getLogger(__name__)

RESOURCES_FOR_ROLES = {
    'admin': {
        'admin-orders': ['read', 'write', 'delete'],
        'admin-orders/cancelled': ['read'],
        'payments': ['read', 'write', 'delete'],
        'payments/sync': ['write'],
        'supplier-discounts': ['read'],
        'orders': ['read', 'write'],
        'reports': ['read'],
        'notifications': ['read', 'write'],
    },
    'finance manager': {
        'admin-orders': ['read'],
        'admin-orders/cancelled': ['read'],
        'payments': ['read', 'write'],
        'payments/sync': ['write'],
        'reports': ['read'],
        'notifications': ['read', 'write'],
    },
    'supplier': {
        'admin-orders': ['read'],
        'admin-orders/respond': ['write'],  # Only their own line items
        'payments/slip': ['write'],
        'supplier-discounts': ['read', 'write', 'delete'],  # Only their own offers
    },
    'user': {
        'orders': ['read', 'write'],  # Only their own orders
        'payments/stripe': ['write'],
        'supplier-discounts': ['read'],
    }
}

def normalize_path(path: str) -> str:
    """Normalize request path for RBAC checking"""
    if path.startswith('/'):
        path = path[1:]

    segments = [segment for segment in path.split('/') if segment]

    if len(segments) == 0:
        return path

    if segments[0] == 'admin-orders':
        if len(segments) >= 2 and segments[1] == 'cancelled':
            return 'admin-orders/cancelled'
        if len(segments) >= 3 and segments[2] in ('respond', 'confirm'):
            return 'admin-orders/respond'
        return 'admin-orders'

    elif segments[0] == 'payments':
        if len(segments) >= 2:
            if segments[1] == 'stripe':
                return 'payments/stripe'
            elif segments[1] == 'slip':
                return 'payments/slip'
            elif segments[1] == 'sync-orders':
                return 'payments/sync'
        return 'payments'

    return segments[0]

def translate_method_to_action(method: str) -> str:
    """Map HTTP methods to RBAC actions"""
    method_permission_mapping = {
        'GET': 'read',
        'POST': 'write',
        'PUT': 'write',
        'PATCH': 'write',
        'DELETE': 'delete',
    }
    return method_permission_mapping.get(method.upper(), 'read')

def get_role(actor: Any) -> str:
    """Extract the role from a current_user dict or object, defaulting to 'user'"""
    if isinstance(actor, dict):
        role = actor.get('role')
    else:
        role = getattr(actor, 'role', None)
    return (role or 'user').strip().lower()

def has_permission(user_role: str, resource_name: str, required_permission: str) -> bool:
    """Check if user role has permission for the resource and action"""
    if user_role not in RESOURCES_FOR_ROLES:
        return False

    user_permissions = RESOURCES_FOR_ROLES[user_role]

    if resource_name in user_permissions:
        return required_permission in user_permissions[resource_name]

    parent_resource = resource_name.split('/')[0] if '/' in resource_name else resource_name
    if parent_resource in user_permissions:
        return required_permission in user_permissions[parent_resource]

    return False

def has_permissions(actor: Any, required_permissions: Iterable[str]) -> bool:
    """
    Single capability check used by routes and helpers.
    Each required permission is written as "resource:action"; all must hold.
    """
    if actor is None:
        return False
    role = get_role(actor)
    for requirement in required_permissions:
        resource_name, _, action = requirement.partition(':')
        if not has_permission(role, resource_name, action or 'read'):
            return False
    return True

def require_permission(resource: Optional[str] = None, permission: Optional[str] = None):
    """
    Create an RBAC dependency that checks permissions

    Args:
        resource: Specific resource name (auto-detected if not provided)
        permission: Specific permission (auto-detected if not provided)
    """
    def check_rbac(request: Request):
        """RBAC dependency function"""
        try:
            current_user = getattr(request.state, 'current_user', None)
            if not current_user:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required"
                )

            user_role = get_role(current_user)
            resource_name = resource or normalize_path(str(request.url.path))
            required_permission = permission or translate_method_to_action(request.method)

            logger.info(f"RBAC Check - User: {user_role}, Resource: {resource_name}, Permission: {required_permission}")

            if not has_permissions(current_user, [f"{resource_name}:{required_permission}"]):
                logger.warning(f"Access denied - User: {user_role}, Resource: {resource_name}, Permission: {required_permission}")
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Access denied. {user_role.title()} role does not have {required_permission} permission for {resource_name}"
                )

            return True

        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"RBAC dependency error: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Authorization check failed"
            )

    return check_rbac

# Procurement orders
require_admin_order_read = require_permission("admin-orders", "read")
require_admin_order_write = require_permission("admin-orders", "write")
require_admin_order_delete = require_permission("admin-orders", "delete")
require_cancelled_order_read = require_permission("admin-orders/cancelled", "read")
require_supplier_response = require_permission("admin-orders/respond", "write")  # Suppliers only

# Payments
require_payment_read = require_permission("payments", "read")
require_payment_write = require_permission("payments", "write")
require_payment_sync = require_permission("payments/sync", "write")
require_slip_write = require_permission("payments/slip", "write")
require_stripe_checkout = require_permission("payments/stripe", "write")

# Supplier discounts
require_discount_read = require_permission("supplier-discounts", "read")
require_discount_write = require_permission("supplier-discounts", "write")
require_discount_delete = require_permission("supplier-discounts", "delete")

# Customer orders
require_order_read = require_permission("orders", "read")
require_order_write = require_permission("orders", "write")

# Reports (admin and finance only)
require_reports = require_permission("reports", "read")
