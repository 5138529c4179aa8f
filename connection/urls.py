from django.urls import path

from .views import (
    accept_connection,
    connection_status,
    connections,
    incoming_requests,
    outgoing_requests,
    reject_connection,
    remove_connection,
    request_connection,
)

urlpatterns = [
    path("connections", connections, name="connections"),
    path("connections/requests", incoming_requests, name="connection_requests"),
    path("connections/requests/sent", outgoing_requests, name="connection_requests_sent"),
    path("connections/request/<int:user_id>", request_connection, name="connection_request"),
    path("connections/accept/<int:user_id>", accept_connection, name="connection_accept"),
    path("connections/reject/<int:user_id>", reject_connection, name="connection_reject"),
    path("connections/status/<int:user_id>", connection_status, name="connection_status"),
    path("connections/<int:user_id>", remove_connection, name="connection_remove"),
]
