from django.core.management.base import BaseCommand

from apps.catalog.models import Category, SubCategory


class Command(BaseCommand):
    help = "Seed base product taxonomy (categories and sub-categories)."

    def handle(self, *args, **options):
        taxonomy = {
            "Beverages": ["Water", "Juices", "Soft Drinks"],
            "Dry Goods": ["Rice", "Flour", "Pulses"],
            "Household": ["Cleaning", "Paper Goods"],
        }

        created_categories = 0
        created_subcategories = 0
        for category_name, subcategory_names in taxonomy.items():
            category, created = Category.objects.get_or_create(
                normalized_name=category_name.upper(), defaults={"name": category_name}
            )
            if created:
                created_categories += 1
            for name in subcategory_names:
                _, created = SubCategory.objects.get_or_create(
                    category=category, normalized_name=name.upper(), defaults={"name": name}
                )
                if created:
                    created_subcategories += 1

        self.stdout.write(
            self.style.SUCCESS(
                "Seed taxonomy completed. "
                f"categories_created={created_categories} subcategories_created={created_subcategories}"
            )
        )
