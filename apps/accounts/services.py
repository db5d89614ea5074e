import logging

from apps.accounts.models import ADMIN_ROLES, Role
from apps.common.permissions import resolve_role

logger = logging.getLogger(__name__)


MENU_PERMISSIONS = (
    "menu.dashboard",
    "menu.users",
    "menu.users.list",
    "menu.users.roles",
    "menu.products",
    "menu.products.category",
    "menu.products.subcategory",
    "menu.products.add",
    "menu.customers",
    "menu.customers.list",
    "menu.sales",
    "menu.sales.orders",
    "menu.sales.reports",
    "menu.orders",
    "menu.settings",
    "menu.customer.requests",
    "menu.customer.requests.create",
    "menu.customer.requests.my",
    "menu.deliveries",
    "menu.deliveries.arrived",
    "menu.deliveries.accepted",
    "menu.deliveries.delivered",
    "menu.deliveries.cancelled",
    "menu.customer.orders",
    "menu.customer.order.status",
    "menu.customer.order.reports",
    "menu.customer.bill.statement",
    "menu.customer.credit.limit",
    "menu.wallet",
)

# Parent menu entries grant their sub-menus.
MENU_EXPANSIONS = {
    "menu.users": ("menu.users.list", "menu.users.roles"),
    "menu.products": ("menu.products.category", "menu.products.subcategory", "menu.products.add"),
    "menu.customers": ("menu.customers.list",),
    "menu.sales": ("menu.sales.orders", "menu.sales.reports"),
    "menu.deliveries": (
        "menu.deliveries.arrived",
        "menu.deliveries.accepted",
        "menu.deliveries.delivered",
        "menu.deliveries.cancelled",
    ),
    "menu.customer.requests": ("menu.customer.requests.create", "menu.customer.requests.my"),
}

# The admin menu does not carry the delivery screens.
ADMIN_MENU_PERMISSIONS = tuple(
    key for key in MENU_PERMISSIONS if key != "menu.deliveries" and not key.startswith("menu.deliveries.")
)


def expand_permissions(permissions):
    expanded = []
    for permission in permissions:
        for key in (permission, *MENU_EXPANSIONS.get(permission, ())):
            if key not in expanded:
                expanded.append(key)
    return expanded


def load_role_permissions(role_name):
    role = Role.objects.filter(name__iexact=str(role_name or "").strip()).first()
    if not role:
        return []
    return [str(permission) for permission in role.permissions]


class PermissionContext:
    """Permission set of one signed-in user.

    Built at session start, refreshed with ``reload()`` and dropped with
    ``clear()`` at logout. While nothing is loaded every check answers
    allowed so menus do not flicker; the REST layer enforces access with
    ``RolePermission`` regardless of what this object says.
    """

    def __init__(self, user, loader=load_role_permissions):
        self.user = user
        self._loader = loader
        self._permissions = None
        self.role = None

    @property
    def loading(self):
        return self._permissions is None

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES

    @property
    def permissions(self):
        if self._permissions is None:
            return []
        if self.is_admin:
            return list(ADMIN_MENU_PERMISSIONS)
        return list(self._permissions)

    def reload(self):
        self.role = resolve_role(self.user)
        if self.is_admin:
            self._permissions = tuple(ADMIN_MENU_PERMISSIONS)
        else:
            self._permissions = tuple(expand_permissions(self._loader(self.role)))
        logger.debug("Loaded %d permissions for %s (%s)", len(self._permissions), self.user, self.role)
        return self

    def clear(self):
        self._permissions = None
        self.role = None

    def has_permission(self, key):
        if self.loading:
            return True
        if self.is_admin:
            return True
        return key in self._permissions
