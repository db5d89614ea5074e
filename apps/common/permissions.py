from rest_framework.permissions import BasePermission

from apps.accounts.models import ADMIN_ROLES, UserRole


ALL_CAPABILITIES = frozenset(
    {
        "users.manage",
        "roles.manage",
        "catalog.view",
        "catalog.manage",
        "inventory.view",
        "inventory.manage",
        "customers.view",
        "customers.view.own",
        "customers.manage",
        "customer_requests.submit",
        "customer_requests.review",
        "orders.view",
        "orders.create",
        "orders.assign",
        "orders.deliver",
        "orders.cancel",
        "orders.delete",
        "order_requests.submit",
        "order_requests.view",
        "order_requests.review",
        "wallet.collect",
        "wallet.review",
        "bills.view",
        "bills.view.own",
        "bills.manage",
        "payment_requests.create",
        "payment_requests.handle",
    }
)

ROLE_CAPABILITIES = {
    UserRole.SUPERADMIN: ALL_CAPABILITIES,
    UserRole.ADMIN: ALL_CAPABILITIES,
    UserRole.SALESMAN: {
        "catalog.view",
        "inventory.view",
        "customers.view",
        "customers.manage",
        "customer_requests.submit",
        "orders.view",
        "orders.create",
        "wallet.collect",
        "payment_requests.handle",
    },
    UserRole.DELIVERY: {
        "catalog.view",
        "orders.view",
        "orders.deliver",
        "orders.cancel",
        "wallet.collect",
        "payment_requests.handle",
    },
    UserRole.CUSTOMER: {
        "catalog.view",
        "customers.view.own",
        "orders.view",
        "orders.create",
        "order_requests.submit",
        "order_requests.view",
        "bills.view.own",
        "payment_requests.create",
    },
}

ROLE_PRECEDENCE = (
    UserRole.SUPERADMIN,
    UserRole.ADMIN,
    UserRole.SALESMAN,
    UserRole.DELIVERY,
    UserRole.CUSTOMER,
)


def resolve_role(user):
    group_names = set(user.groups.values_list("name", flat=True))
    for role in ROLE_PRECEDENCE:
        if role in group_names:
            return role
    return getattr(user, "role", UserRole.SALESMAN)


def is_admin(user):
    return bool(user and user.is_authenticated and resolve_role(user) in ADMIN_ROLES)


def has_capability(user, capability):
    return capability in ROLE_CAPABILITIES.get(resolve_role(user), set())


class RolePermission(BasePermission):
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        capability_map = getattr(view, "capability_map", {})
        action = getattr(view, "action", None) or request.method.lower()
        required = capability_map.get(action) or capability_map.get(request.method.lower()) or set()
        if not required:
            return True

        user_caps = ROLE_CAPABILITIES.get(resolve_role(request.user), set())
        return any(cap in user_caps for cap in required)
