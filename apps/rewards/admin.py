from django.contrib import admin

from apps.rewards.models import CardNotification, RewardAccount, ScratchCard


@admin.register(ScratchCard)
class ScratchCardAdmin(admin.ModelAdmin):
    list_display = ("code", "customer", "prize_kind", "prize_value", "issued_at", "is_scratched", "expires_at")
    list_filter = ("prize_kind", "is_scratched")
    search_fields = ("code", "customer__name", "customer__phone_normalized")
    readonly_fields = ("code", "prize_kind", "prize_value", "issued_at", "is_scratched", "scratched_at", "expires_at")

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(RewardAccount)
class RewardAccountAdmin(admin.ModelAdmin):
    list_display = ("customer", "issued_count", "updated_at")
    search_fields = ("customer__name", "customer__phone_normalized")


@admin.register(CardNotification)
class CardNotificationAdmin(admin.ModelAdmin):
    list_display = ("customer", "phone", "cards_minted", "total_purchase", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("phone", "customer__name")
