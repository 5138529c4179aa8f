from django.contrib import admin

from .models import Message


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ["sender", "recipient", "short_content", "created_at", "read"]
    list_filter = ["read"]
    search_fields = ["sender__username", "recipient__username", "content"]
    raw_id_fields = ["sender", "recipient"]
    readonly_fields = ["conversation_key", "created_at"]

    @admin.display(description="Content")
    def short_content(self, obj):
        return obj.content[:50]
