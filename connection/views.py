from django.shortcuts import get_object_or_404
from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema

from people.serializers import UserSummarySerializer
from . import services


User = get_user_model()

ACTION_RESPONSE = openapi.Response(
    "Action result",
    openapi.Schema(
        type=openapi.TYPE_OBJECT,
        properties={
            "success": openapi.Schema(type=openapi.TYPE_BOOLEAN),
            "message": openapi.Schema(type=openapi.TYPE_STRING),
        },
    ),
)


def _ok(message):
    return Response({"success": True, "message": message}, status=status.HTTP_200_OK)


def _users(ids):
    by_id = User.objects.in_bulk(ids)
    users = [by_id[i] for i in ids if i in by_id]
    return UserSummarySerializer(users, many=True).data


# ============ Lifecycle ===================
@swagger_auto_schema(method="post", operation_summary="Send a connection request", responses={200: ACTION_RESPONSE})
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def request_connection(request, user_id: int):
    target = get_object_or_404(User, id=user_id)
    services.request_connection(request.user, target)
    return _ok("Connection request sent successfully")


@swagger_auto_schema(method="post", operation_summary="Accept a pending request from a user", responses={200: ACTION_RESPONSE})
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def accept_connection(request, user_id: int):
    requester = get_object_or_404(User, id=user_id)
    services.accept_connection(request.user, requester)
    return _ok("Connection request accepted")


@swagger_auto_schema(method="post", operation_summary="Reject a pending request from a user", responses={200: ACTION_RESPONSE})
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def reject_connection(request, user_id: int):
    requester = get_object_or_404(User, id=user_id)
    services.reject_connection(request.user, requester)
    return _ok("Connection request rejected")


@swagger_auto_schema(method="delete", operation_summary="Remove an accepted connection", responses={200: ACTION_RESPONSE})
@api_view(["DELETE"])
@permission_classes([IsAuthenticated])
def remove_connection(request, user_id: int):
    other = get_object_or_404(User, id=user_id)
    services.remove_connection(request.user, other)
    return _ok("Connection removed successfully")


# ============ Listings ===================
@swagger_auto_schema(method="get", operation_summary="Users connected with the caller")
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def connections(request):
    return Response({
        "success": True,
        "connections": _users(services.list_accepted(request.user)),
    })


@swagger_auto_schema(method="get", operation_summary="Pending requests sent to the caller")
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def incoming_requests(request):
    return Response({
        "success": True,
        "requests": _users(services.list_pending_incoming(request.user)),
    })


@swagger_auto_schema(method="get", operation_summary="Pending requests the caller has sent")
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def outgoing_requests(request):
    return Response({
        "success": True,
        "requests": _users(services.list_pending_outgoing(request.user)),
    })


@swagger_auto_schema(method="get", operation_summary="Connection state between the caller and a user")
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def connection_status(request, user_id: int):
    other = get_object_or_404(User, id=user_id)
    return Response({
        "success": True,
        "status": services.connection_status(request.user, other),
    })
