from django.db import transaction
from django.db.models import ProtectedError, Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.audit.services import record_audit
from apps.common.exceptions import NotFound, ValidationError
from apps.common.permissions import RolePermission, is_admin
from apps.customers import services
from apps.customers.models import Customer, CustomerRequest, CustomerRequestStatus, normalize_phone
from apps.customers.serializers import (
    CustomerRequestCreateSerializer,
    CustomerRequestSerializer,
    CustomerSerializer,
    RejectionSerializer,
)
from apps.customers.services import customer_for_user, set_credit_limit


def customer_snapshot(customer):
    return {
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "credit_limit": str(customer.credit_limit),
        "balance_credit_limit": str(customer.balance_credit_limit),
        "billing_type": customer.billing_type,
    }


class CustomerViewSet(viewsets.ModelViewSet):
    queryset = Customer.objects.select_related("user").order_by("name")
    serializer_class = CustomerSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["customers.view"],
        "retrieve": ["customers.view"],
        "create": ["customers.manage"],
        "update": ["customers.manage"],
        "partial_update": ["customers.manage"],
        "destroy": ["customers.manage"],
        "me": ["customers.view.own"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        query = self.request.query_params.get("q")
        if query:
            query = query.strip()
            queryset = queryset.filter(
                Q(name__icontains=query)
                | Q(email__icontains=query)
                | Q(phone_normalized__icontains=normalize_phone(query))
                | Q(pincode=query)
            )
        billing_type = self.request.query_params.get("billing_type")
        if billing_type:
            queryset = queryset.filter(billing_type=billing_type)
        return queryset

    def perform_create(self, serializer):
        customer = serializer.save(created_by=self.request.user)
        record_audit(
            actor=self.request.user,
            action="customers.customer.create",
            entity_type="customer",
            entity_id=customer.id,
            payload=customer_snapshot(customer),
        )

    def perform_update(self, serializer):
        before = customer_snapshot(serializer.instance)
        new_limit = serializer.validated_data.pop("credit_limit", None)
        with transaction.atomic():
            customer = serializer.save()
            if new_limit is not None and new_limit != customer.credit_limit:
                customer = set_credit_limit(customer, new_limit)
                serializer.instance = customer
            record_audit(
                actor=self.request.user,
                action="customers.customer.update",
                entity_type="customer",
                entity_id=customer.id,
                payload={"before": before, "after": customer_snapshot(customer)},
            )

    def perform_destroy(self, instance):
        snapshot = customer_snapshot(instance)
        customer_id = instance.id
        try:
            with transaction.atomic():
                super().perform_destroy(instance)
        except ProtectedError:
            raise ValidationError("Customer has orders or bills and cannot be deleted.")
        record_audit(
            actor=self.request.user,
            action="customers.customer.delete",
            entity_type="customer",
            entity_id=customer_id,
            payload=snapshot,
        )

    @action(detail=False, methods=["get"])
    def me(self, request):
        customer = customer_for_user(request.user)
        if customer is None:
            raise NotFound("No customer profile is linked to this account.")
        return Response(self.get_serializer(customer).data)


class CustomerRequestViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = CustomerRequest.objects.select_related("requested_by", "decided_by")
    serializer_class = CustomerRequestSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["customer_requests.submit", "customer_requests.review"],
        "retrieve": ["customer_requests.submit", "customer_requests.review"],
        "create": ["customer_requests.submit"],
        "mine": ["customer_requests.submit"],
        "pending": ["customer_requests.review"],
        "accept": ["customer_requests.review"],
        "reject": ["customer_requests.review"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if not is_admin(self.request.user):
            queryset = queryset.filter(requested_by=self.request.user)
        status_param = self.request.query_params.get("status")
        if status_param:
            queryset = queryset.filter(status=status_param.strip().lower())
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = CustomerRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        customer_request = services.submit_customer_request(actor=request.user, **serializer.validated_data)
        return Response(self.get_serializer(customer_request).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def mine(self, request):
        queryset = self.get_queryset().filter(requested_by=request.user)
        return Response(self.get_serializer(queryset, many=True).data)

    @action(detail=False, methods=["get"])
    def pending(self, request):
        queryset = self.get_queryset().filter(status=CustomerRequestStatus.PENDING)
        return Response(self.get_serializer(queryset, many=True).data)

    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        customer_request, customer, password = services.accept_customer_request(
            customer_request=self.get_object(), actor=request.user
        )
        data = self.get_serializer(customer_request).data
        data["customer_profile"] = CustomerSerializer(customer).data
        data["credentials"] = {"username": customer.user.username, "temporary_password": password}
        return Response(data)

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        serializer = RejectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        customer_request = services.reject_customer_request(
            customer_request=self.get_object(), actor=request.user, reason=serializer.validated_data.get("reason", "")
        )
        return Response(self.get_serializer(customer_request).data)
