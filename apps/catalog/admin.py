from django.contrib import admin

from apps.catalog.models import Category, Product, SubCategory


class SubCategoryInline(admin.TabularInline):
    model = SubCategory
    extra = 0
    exclude = ("normalized_name",)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "category", "subcategory", "unit", "price", "is_active", "updated_at")
    list_filter = ("is_active", "unit", "category")
    search_fields = ("name", "category_label", "subcategory_label")


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "is_active", "updated_at")
    list_filter = ("is_active",)
    search_fields = ("name", "normalized_name")
    exclude = ("normalized_name",)
    inlines = [SubCategoryInline]


@admin.register(SubCategory)
class SubCategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "category", "is_active", "updated_at")
    list_filter = ("is_active", "category")
    search_fields = ("name", "normalized_name", "category__name")
    exclude = ("normalized_name",)
