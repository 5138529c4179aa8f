from django.contrib import admin

from .models import Connection


@admin.register(Connection)
class ConnectionAdmin(admin.ModelAdmin):
    list_display = ["requester", "recipient", "status", "created_at", "updated_at"]
    list_filter = ["status"]
    search_fields = ["requester__username", "recipient__username"]
    raw_id_fields = ["requester", "recipient"]
