"""API views for rooms."""

from __future__ import annotations

from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.users.authorization import MANAGE, authorize

from .models import Room
from .serializers import RoomSerializer, RoomUpdateSerializer, RoomVersionSerializer
from .services import room_editor


class IsRoomManagerOrReadOnly(permissions.BasePermission):
    """Anyone may read rooms, only admins may change them."""

    def has_permission(self, request, view):  # type: ignore
        if request.method in permissions.SAFE_METHODS:
            return True
        return authorize(request.user, None, MANAGE)


class RoomViewSet(viewsets.ModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer
    permission_classes = [IsRoomManagerOrReadOnly]

    def update(self, request, *args, **kwargs):  # type: ignore
        room: Room = self.get_object()  # type: ignore
        # PUT and PATCH behave alike: fields are optional, version is not.
        serializer = RoomUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        expected_version = data.pop("version")

        room = room_editor.update(room, data, expected_version)
        return Response(RoomSerializer(room).data, status=status.HTTP_200_OK)

    def destroy(self, request, *args, **kwargs):  # type: ignore
        room: Room = self.get_object()  # type: ignore
        payload = request.data or request.query_params
        serializer = RoomVersionSerializer(data=payload)
        serializer.is_valid(raise_exception=True)

        room_editor.delete(room, serializer.validated_data["version"])
        return Response(status=status.HTTP_204_NO_CONTENT)
