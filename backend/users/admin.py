from django.contrib import admin
from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ("username", "email", "phone", "role", "is_staff")
    search_fields = ("username", "email", "phone")
    list_filter = ("is_staff", "is_superuser", "is_active", "role")

    fields = ("username", "email", "phone", "role", "is_staff", "is_superuser", "is_active", "date_joined", "last_login")
    readonly_fields = ("date_joined", "last_login")
