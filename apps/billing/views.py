from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.accounts.models import UserRole
from apps.billing import services
from apps.billing.models import Bill, PaymentRequest
from apps.billing.serializers import (
    BillGenerateSerializer,
    BillSerializer,
    PaymentRequestCreateSerializer,
    PaymentRequestSerializer,
)
from apps.common.permissions import RolePermission, is_admin, resolve_role
from apps.orders.serializers import ReasonSerializer


class BillViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Bill.objects.select_related("customer").prefetch_related("orders")
    serializer_class = BillSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["bills.view", "bills.view.own"],
        "retrieve": ["bills.view", "bills.view.own"],
        "generate": ["bills.manage"],
    }

    def get_queryset(self):
        services.mark_overdue()
        queryset = super().get_queryset()
        if resolve_role(self.request.user) == UserRole.CUSTOMER:
            queryset = queryset.filter(customer__user=self.request.user)
        customer_id = self.request.query_params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        status_param = self.request.query_params.get("status")
        if status_param:
            queryset = queryset.filter(status=status_param.strip().lower())
        return queryset

    @action(detail=False, methods=["post"])
    def generate(self, request):
        serializer = BillGenerateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        bill = services.generate_bill(actor=request.user, **serializer.validated_data)
        return Response(BillSerializer(Bill.objects.get(pk=bill.pk)).data, status=status.HTTP_201_CREATED)


class PaymentRequestViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = PaymentRequest.objects.select_related("customer", "recipient", "bill")
    serializer_class = PaymentRequestSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["payment_requests.create", "payment_requests.handle"],
        "retrieve": ["payment_requests.create", "payment_requests.handle"],
        "create": ["payment_requests.create"],
        "accept": ["payment_requests.handle"],
        "reject": ["payment_requests.handle"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        user = self.request.user
        if not is_admin(user):
            if resolve_role(user) == UserRole.CUSTOMER:
                queryset = queryset.filter(customer__user=user)
            else:
                queryset = queryset.filter(recipient=user)
        status_param = self.request.query_params.get("status")
        if status_param:
            queryset = queryset.filter(status=status_param.strip().lower())
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = PaymentRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        payment_request = services.create_payment_request(
            actor=request.user,
            bill=data["bill"],
            amount=data["amount"],
            method=data["method"],
            recipient=data["recipient"],
            recipient_type=data["recipient_type"],
            cheque=serializer.cheque(),
            note=data.get("note", ""),
        )
        return Response(PaymentRequestSerializer(payment_request).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        payment_request, bill_transaction = services.accept_payment_request(
            payment_request=self.get_object(), actor=request.user
        )
        data = PaymentRequestSerializer(payment_request).data
        data["bill_transaction"] = str(bill_transaction.id)
        return Response(data)

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment_request = services.reject_payment_request(
            payment_request=self.get_object(), actor=request.user, reason=serializer.validated_data.get("reason", "")
        )
        return Response(PaymentRequestSerializer(payment_request).data)
