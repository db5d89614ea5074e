from rest_framework.routers import DefaultRouter

from apps.orders.views import OrderRequestViewSet, OrderViewSet

router = DefaultRouter()
router.register("orders", OrderViewSet, basename="order")
router.register("order-requests", OrderRequestViewSet, basename="order-request")

urlpatterns = router.urls
