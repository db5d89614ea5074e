from django.db.models import F, Prefetch, Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.accounts.models import UserRole
from apps.audit.services import audit_trail
from apps.common.exceptions import NotFound, ValidationError
from apps.common.permissions import RolePermission, resolve_role
from apps.customers.services import customer_for_user
from apps.orders import services
from apps.orders.models import DeliveryState, Order, OrderDelivery, OrderRequest, OrderRequestLine
from apps.orders.serializers import (
    OrderAssignSerializer,
    OrderCreateSerializer,
    OrderDeliverSerializer,
    OrderRequestCreateSerializer,
    OrderRequestSerializer,
    OrderSerializer,
    OrderUpdateSerializer,
    ReasonSerializer,
)

TRUE_VALUES = {"1", "true", "yes"}


def scope_to_user(queryset, user):
    role = resolve_role(user)
    if role == UserRole.CUSTOMER:
        return queryset.filter(customer__user=user)
    if role == UserRole.DELIVERY:
        return queryset.filter(assigned_to=user)
    return queryset


def resolve_customer(request, customer):
    if customer is not None:
        return customer
    if resolve_role(request.user) == UserRole.CUSTOMER:
        customer = customer_for_user(request.user)
        if customer is None:
            raise NotFound("No customer profile is linked to this account.")
        return customer
    raise ValidationError({"customer": "This field is required."})


class OrderViewSet(
    mixins.CreateModelMixin, mixins.UpdateModelMixin, mixins.DestroyModelMixin, viewsets.ReadOnlyModelViewSet
):
    queryset = Order.objects.select_related("customer", "product", "created_by", "assigned_to").prefetch_related(
        Prefetch("deliveries", queryset=OrderDelivery.objects.select_related("delivered_by"))
    )
    serializer_class = OrderSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["orders.view"],
        "retrieve": ["orders.view"],
        "create": ["orders.create"],
        "update": ["orders.create"],
        "partial_update": ["orders.create"],
        "destroy": ["orders.delete"],
        "assign": ["orders.assign"],
        "accept": ["orders.deliver"],
        "reject": ["orders.deliver"],
        "deliver": ["orders.deliver"],
        "cancel": ["orders.cancel"],
        "invoice": ["orders.view"],
        "history": ["orders.view"],
    }

    def get_queryset(self):
        queryset = scope_to_user(super().get_queryset(), self.request.user)
        params = self.request.query_params

        for field in ("status", "assignment_status", "payment"):
            value = params.get(field)
            if value:
                queryset = queryset.filter(**{field: value.strip().lower()})
        customer_id = params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        product_id = params.get("product")
        if product_id:
            queryset = queryset.filter(product_id=product_id)
        if str(params.get("mine", "")).lower() in TRUE_VALUES:
            queryset = queryset.filter(assigned_to=self.request.user)

        delivery_state = params.get("delivery_state")
        if delivery_state == DeliveryState.NOT_DELIVERED:
            queryset = queryset.filter(delivered_quantity=0)
        elif delivery_state == DeliveryState.PARTIALLY_DELIVERED:
            queryset = queryset.filter(delivered_quantity__gt=0, delivered_quantity__lt=F("quantity"))
        elif delivery_state == DeliveryState.FULLY_DELIVERED:
            queryset = queryset.filter(delivered_quantity__gte=F("quantity"))

        date_from = params.get("date_from")
        if date_from:
            queryset = queryset.filter(order_date__gte=date_from)
        date_to = params.get("date_to")
        if date_to:
            queryset = queryset.filter(order_date__lte=date_to)
        return queryset

    def _respond(self, order, status_code=status.HTTP_200_OK, **extra):
        order = Order.objects.select_related("customer", "product", "created_by", "assigned_to").get(pk=order.pk)
        data = OrderSerializer(order, context=self.get_serializer_context()).data
        data.update(extra)
        return Response(data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = services.create_order(
            actor=request.user,
            customer=resolve_customer(request, data.get("customer")),
            product=data["product"],
            quantity=data["quantity"],
            payment=data["payment"],
            remarks=data.get("remarks", ""),
        )
        return self._respond(order, status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        serializer = OrderUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = services.update_order(
            order=self.get_object(),
            actor=request.user,
            quantity=data.get("quantity"),
            payment=data.get("payment"),
            remarks=data.get("remarks"),
        )
        return self._respond(order)

    def destroy(self, request, *args, **kwargs):
        services.delete_order(order=self.get_object(), actor=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def assign(self, request, pk=None):
        serializer = OrderAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = services.assign(
            order=self.get_object(), actor=request.user, delivery_actor=serializer.validated_data["assigned_to"]
        )
        return self._respond(order)

    @action(detail=True, methods=["post"])
    def accept(self, request, pk=None):
        return self._respond(services.accept(order=self.get_object(), actor=request.user))

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = services.reject(
            order=self.get_object(), actor=request.user, reason=serializer.validated_data.get("reason", "")
        )
        return self._respond(order)

    @action(detail=True, methods=["post"])
    def deliver(self, request, pk=None):
        serializer = OrderDeliverSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order, delivery, bill_transaction = services.deliver(
            order=self.get_object(),
            actor=request.user,
            quantity=data["quantity"],
            payment_method=data["payment_method"],
            cheque=data.get("cheque"),
            amount=data.get("amount"),
        )
        return self._respond(
            order,
            delivery_id=str(delivery.id),
            bill_transaction=str(bill_transaction.id) if bill_transaction else None,
        )

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        return self._respond(services.cancel(order=self.get_object(), actor=request.user))

    @action(detail=True, methods=["get"])
    def invoice(self, request, pk=None):
        kind = request.query_params.get("kind", "delivered")
        return Response(services.invoice(self.get_object(), kind))

    @action(detail=True, methods=["get"])
    def history(self, request, pk=None):
        order = self.get_object()
        return Response(
            [
                {
                    "action": entry.action,
                    "actor": entry.actor.username if entry.actor else None,
                    "actor_role": entry.actor_role,
                    "payload": entry.payload,
                    "created_at": entry.created_at,
                }
                for entry in audit_trail(entity_type="order", entity_id=order.id)
            ]
        )


class OrderRequestViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = OrderRequest.objects.select_related("customer", "requested_by", "decided_by").prefetch_related(
        Prefetch("lines", queryset=OrderRequestLine.objects.select_related("product")),
        "orders",
    )
    serializer_class = OrderRequestSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["order_requests.view", "order_requests.review"],
        "retrieve": ["order_requests.view", "order_requests.review"],
        "create": ["order_requests.submit"],
        "approve": ["order_requests.review"],
        "reject": ["order_requests.review"],
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if resolve_role(self.request.user) == UserRole.CUSTOMER:
            queryset = queryset.filter(Q(customer__user=self.request.user) | Q(requested_by=self.request.user))
        status_param = self.request.query_params.get("status")
        if status_param:
            queryset = queryset.filter(status=status_param.strip().lower())
        customer_id = self.request.query_params.get("customer")
        if customer_id:
            queryset = queryset.filter(customer_id=customer_id)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = OrderRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order_request = services.submit_request(
            actor=request.user,
            customer=resolve_customer(request, data.get("customer")),
            lines=data["lines"],
            payment=data["payment"],
            remarks=data.get("remarks", ""),
        )
        return Response(self._serialize(order_request), status=status.HTTP_201_CREATED)

    def _serialize(self, order_request):
        return OrderRequestSerializer(self.get_queryset().get(pk=order_request.pk), context=self.get_serializer_context()).data

    @action(detail=True, methods=["post"])
    def approve(self, request, pk=None):
        order_request, _orders = services.approve_request(order_request=self.get_object(), actor=request.user)
        return Response(self._serialize(order_request))

    @action(detail=True, methods=["post"])
    def reject(self, request, pk=None):
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order_request = services.reject_request(
            order_request=self.get_object(), actor=request.user, reason=serializer.validated_data.get("reason", "")
        )
        return Response(self._serialize(order_request))
