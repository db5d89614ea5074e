from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.common.permissions import RolePermission, is_admin
from apps.wallet import services
from apps.wallet.models import BillTransaction, CollectionMethod, ForwardRequest, ForwardStatus
from apps.wallet.serializers import BillTransactionSerializer, CollectionCreateSerializer, ForwardRequestSerializer


def render_totals(totals):
    return {key: {part: str(amount) for part, amount in parts.items()} for key, parts in totals.items()}


class WalletViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = BillTransaction.objects.select_related("customer", "recipient")
    serializer_class = BillTransactionSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["wallet.collect", "wallet.review"],
        "retrieve": ["wallet.collect", "wallet.review"],
        "create": ["wallet.collect"],
        "mine": ["wallet.collect"],
        "forward": ["wallet.collect"],
        "accept": ["wallet.review"],
        "reject": ["wallet.review"],
        "summary": ["wallet.review"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if not is_admin(self.request.user):
            queryset = queryset.filter(recipient=self.request.user)
        params = self.request.query_params
        for field in ("status", "method", "recipient_type"):
            value = params.get(field)
            if value:
                queryset = queryset.filter(**{field: value.strip().lower()})
        recipient_id = params.get("recipient")
        if recipient_id:
            queryset = queryset.filter(recipient_id=recipient_id)
        customer_id = params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = CollectionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        bill_transaction = services.record_collection(
            actor=request.user,
            customer=serializer.validated_data["customer"],
            amount=serializer.validated_data["amount"],
            method=serializer.validated_data["method"],
            cheque=serializer.cheque(),
            note=serializer.validated_data.get("note", ""),
        )
        return Response(BillTransactionSerializer(bill_transaction).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def mine(self, request):
        queryset = BillTransaction.objects.select_related("customer", "recipient").filter(recipient=request.user)
        method = request.query_params.get("method")
        if method in CollectionMethod.values:
            queryset = queryset.filter(method=method)
        return Response(
            {
                "totals": render_totals(services.actor_wallet(request.user)),
                "transactions": BillTransactionSerializer(queryset, many=True).data,
            }
        )

    @action(detail=True, methods=["post"])
    def forward(self, request, pk=None):
        bill_transaction = services.request_forward(bill_transaction=self.get_object(), actor=request.user)
        return Response(BillTransactionSerializer(bill_transaction).data)

    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        bill_transaction = services.admin_accept(bill_transaction=self.get_object(), actor=request.user)
        return Response(BillTransactionSerializer(bill_transaction).data)

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        bill_transaction = services.admin_reject(bill_transaction=self.get_object(), actor=request.user)
        return Response(BillTransactionSerializer(bill_transaction).data)

    @action(detail=False, methods=["get"])
    def summary(self, request):
        return Response(render_totals(services.admin_totals()))


class ForwardRequestViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ForwardRequest.objects.select_related("transaction__customer", "sender", "decided_by")
    serializer_class = ForwardRequestSerializer
    permission_classes = [RolePermission]
    capability_map = {"list": ["wallet.review"], "retrieve": ["wallet.review"]}

    def get_queryset(self):
        queryset = super().get_queryset()
        status_param = self.request.query_params.get("status", ForwardStatus.PENDING)
        if status_param != "all":
            queryset = queryset.filter(status=status_param)
        sender_id = self.request.query_params.get("sender")
        if sender_id:
            queryset = queryset.filter(sender_id=sender_id)
        return queryset
