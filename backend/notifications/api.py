"""Read/unread API for in-app notifications."""

from __future__ import annotations

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from . import services
from .models import Notification
from .serializers import NotificationSerializer


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["is_read", "type", "booking"]

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user).order_by("-created_at")

    @action(detail=True, methods=["post"], url_path="read")
    def read(self, request, *args, **kwargs):
        notification = services.mark_read(self.get_object(), is_read=True)
        return Response(self.get_serializer(notification).data, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="unread")
    def unread(self, request, *args, **kwargs):
        notification = services.mark_read(self.get_object(), is_read=False)
        return Response(self.get_serializer(notification).data, status=status.HTTP_200_OK)

    @action(detail=False, methods=["post"], url_path="mark-all-read")
    def mark_all_read(self, request, *args, **kwargs):
        updated = services.mark_all_read(request.user)
        return Response({"updated": updated}, status=status.HTTP_200_OK)
