from django.contrib import admin

from apps.customers.models import Customer


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "owner", "created_at")
    search_fields = ("name", "phone", "phone_normalized")
    list_filter = ("owner",)
    readonly_fields = ("phone_normalized", "created_at", "updated_at")
