import logging

from django.conf import settings
from django.shortcuts import get_object_or_404
from django.contrib.auth import get_user_model
from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema

from . import services
from .exceptions import InvalidPaginationError
from .registry import user_group_name
from .serializers import MessageSerializer, SendMessageSerializer, delivered_payload


User = get_user_model()
logger = logging.getLogger(__name__)

PAGE_PARAMS = [
    openapi.Parameter("page", openapi.IN_QUERY, type=openapi.TYPE_INTEGER, description="1 = newest messages"),
    openapi.Parameter("limit", openapi.IN_QUERY, type=openapi.TYPE_INTEGER, description="Messages per page"),
]


def _int_param(request, name, default):
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidPaginationError()


def _push_delivery(message):
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    try:
        async_to_sync(channel_layer.group_send)(
            user_group_name(message.recipient_id),
            {
                "type": "message.delivered",
                "data": delivered_payload(message),
            },
        )
    except Exception:
        # stored already; the recipient sees it on the next history fetch
        logger.exception("Live delivery of message %s failed", message.id)


# ============ Conversation ===================
@swagger_auto_schema(method="get", manual_parameters=PAGE_PARAMS, operation_summary="Conversation history, newest page first")
@swagger_auto_schema(method="post", request_body=SendMessageSerializer, operation_summary="Send a message")
@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def conversation(request, user_id: int):
    other = get_object_or_404(User, id=user_id)

    if request.method == "POST":
        serializer = SendMessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        message, created = services.append_message(
            request.user, other, serializer.validated_data["content"] # type: ignore
        )
        if created:
            _push_delivery(message)

        return Response(
            {"success": True, "message": MessageSerializer(message).data},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    page = _int_param(request, "page", 1)
    limit = min(_int_param(request, "limit", settings.CHAT_PAGE_SIZE), settings.CHAT_MAX_PAGE_SIZE)
    result = services.list_messages(request.user, other, page, limit)

    return Response({
        "success": True,
        "messages": MessageSerializer(result.messages, many=True).data,
        "pagination": result.pagination(),
    })


# ============ Read state ===================
@swagger_auto_schema(method="get", operation_summary="Unread messages addressed to the caller")
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def unread_count(request):
    return Response({
        "success": True,
        "unreadCount": services.count_unread(request.user),
    })


@swagger_auto_schema(method="post", operation_summary="Mark a conversation as read")
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def mark_read(request, user_id: int):
    other = get_object_or_404(User, id=user_id)
    return Response({
        "success": True,
        "updated": services.mark_read(request.user, other),
    })
