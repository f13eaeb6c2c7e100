from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("username", "email", "external_id", "stripe_account_id", "is_staff", "is_active")
    fieldsets = BaseUserAdmin.fieldsets + (
        ("Marketplace", {"fields": ("external_id", "phone", "stripe_account_id")}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ("Marketplace", {"fields": ("external_id", "phone", "stripe_account_id")}),
    )
