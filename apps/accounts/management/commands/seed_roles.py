from django.core.management.base import BaseCommand

from apps.accounts.models import Role, UserRole

DEFAULT_ROLE_PERMISSIONS = {
    UserRole.SALESMAN: ["menu.dashboard", "menu.customers", "menu.sales", "menu.customer.requests", "menu.wallet"],
    UserRole.DELIVERY: ["menu.dashboard", "menu.deliveries", "menu.wallet"],
    UserRole.CUSTOMER: [
        "menu.dashboard",
        "menu.customer.orders",
        "menu.customer.order.status",
        "menu.customer.order.reports",
        "menu.customer.bill.statement",
        "menu.customer.credit.limit",
    ],
}


class Command(BaseCommand):
    help = "Create default role permission sets"

    def handle(self, *args, **options):
        for role_name, permissions in DEFAULT_ROLE_PERMISSIONS.items():
            role, created = Role.objects.get_or_create(name=role_name, defaults={"permissions": permissions})
            action = "created" if created else "exists"
            self.stdout.write(self.style.SUCCESS(f"{role.name}: {action}"))
