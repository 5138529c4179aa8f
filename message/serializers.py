from rest_framework import serializers

from .models import Message


class MessageSerializer(serializers.ModelSerializer):
    sender = serializers.IntegerField(source="sender_id", read_only=True)
    recipient = serializers.IntegerField(source="recipient_id", read_only=True)
    conversationKey = serializers.CharField(source="conversation_key", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "sender", "recipient", "content", "conversationKey", "createdAt", "read"]


class SendMessageSerializer(serializers.Serializer):
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)


class WireMessageSerializer(serializers.Serializer):
    """A history item or a ``message-delivered`` payload as a client receives it."""
    id = serializers.IntegerField(required=False, allow_null=True)
    sender = serializers.IntegerField()
    recipient = serializers.IntegerField(required=False, allow_null=True)
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)
    createdAt = serializers.DateTimeField(required=False)
    timestamp = serializers.DateTimeField(required=False)

    def validate(self, attrs):
        if attrs.get("createdAt") is None and attrs.get("timestamp") is None:
            raise serializers.ValidationError("createdAt or timestamp is required")
        return attrs


def _timestamp(message):
    return serializers.DateTimeField().to_representation(message.created_at)


# Live channel payloads
def delivered_payload(message) -> dict:
    return {
        "id": message.id,
        "sender": message.sender_id,
        "recipient": message.recipient_id,
        "content": message.content,
        "timestamp": _timestamp(message),
        "conversationKey": message.conversation_key,
    }


def sent_payload(message, client_temp_id) -> dict:
    return {
        "id": message.id,
        "clientTempId": client_temp_id,
        "timestamp": _timestamp(message),
    }
