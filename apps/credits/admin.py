"""Admin configuration for credit models."""

from django.contrib import admin

from apps.credits.models import CreditAccount, CreditTransaction


class CreditTransactionInline(admin.TabularInline):
    model = CreditTransaction
    extra = 0
    readonly_fields = ["kind", "amount", "balance_after", "reference", "description", "created_at"]
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CreditAccount)
class CreditAccountAdmin(admin.ModelAdmin):
    list_display = ["submitter", "balance", "updated_at"]
    search_fields = ["submitter"]
    readonly_fields = ["created_at", "updated_at"]
    inlines = [CreditTransactionInline]


@admin.register(CreditTransaction)
class CreditTransactionAdmin(admin.ModelAdmin):
    list_display = ["account", "kind", "amount", "balance_after", "reference", "created_at"]
    list_filter = ["kind"]
    search_fields = ["account__submitter", "reference"]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
