from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import ProtectedError
from rest_framework import generics, viewsets
from rest_framework.response import Response

from apps.accounts.models import Role
from apps.accounts.serializers import PermissionListSerializer, RoleSerializer, UserSerializer
from apps.accounts.services import PermissionContext
from apps.audit.services import record_audit
from apps.common.exceptions import ValidationError
from apps.common.permissions import RolePermission

User = get_user_model()


class MeView(generics.GenericAPIView):
    serializer_class = UserSerializer

    def get(self, request, *args, **kwargs):
        return Response(self.get_serializer(request.user).data)


class MyPermissionsView(generics.GenericAPIView):
    serializer_class = PermissionListSerializer

    def get(self, request, *args, **kwargs):
        context = PermissionContext(request.user).reload()
        serializer = self.get_serializer({"role": context.role, "permissions": context.permissions})
        return Response(serializer.data)


class RoleViewSet(viewsets.ModelViewSet):
    queryset = Role.objects.all()
    serializer_class = RoleSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["roles.manage"],
        "retrieve": ["roles.manage"],
        "create": ["roles.manage"],
        "partial_update": ["roles.manage"],
        "update": ["roles.manage"],
        "destroy": ["roles.manage"],
    }

    def perform_create(self, serializer):
        role = serializer.save()
        record_audit(
            actor=self.request.user,
            action="roles.create",
            entity_type="role",
            entity_id=role.id,
            payload={"name": role.name, "permissions": role.permissions},
        )

    def perform_update(self, serializer):
        before = list(serializer.instance.permissions)
        role = serializer.save()
        record_audit(
            actor=self.request.user,
            action="roles.update",
            entity_type="role",
            entity_id=role.id,
            payload={"before": before, "after": role.permissions},
        )

    def perform_destroy(self, instance):
        record_audit(
            actor=self.request.user,
            action="roles.delete",
            entity_type="role",
            entity_id=instance.id,
            payload={"name": instance.name},
        )
        super().perform_destroy(instance)


class UserViewSet(viewsets.ModelViewSet):
    queryset = User.objects.order_by("username")
    serializer_class = UserSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["users.manage"],
        "retrieve": ["users.manage"],
        "create": ["users.manage"],
        "partial_update": ["users.manage"],
        "update": ["users.manage"],
        "destroy": ["users.manage"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        role = self.request.query_params.get("role")
        if role:
            queryset = queryset.filter(role=role.strip().upper())
        return queryset

    def perform_create(self, serializer):
        user = serializer.save()
        record_audit(
            actor=self.request.user,
            action="users.create",
            entity_type="user",
            entity_id=user.id,
            payload={"username": user.username, "role": user.role},
        )

    def perform_destroy(self, instance):
        snapshot = {"username": instance.username, "role": instance.role}
        user_id = instance.id
        try:
            with transaction.atomic():
                super().perform_destroy(instance)
        except ProtectedError:
            raise ValidationError("User has recorded activity and cannot be deleted; deactivate the account instead.")
        record_audit(
            actor=self.request.user,
            action="users.delete",
            entity_type="user",
            entity_id=user_id,
            payload=snapshot,
        )
