from rest_framework.routers import DefaultRouter

from apps.billing.views import BillViewSet, PaymentRequestViewSet

router = DefaultRouter()
router.register("bills", BillViewSet, basename="bill")
router.register("payment-requests", PaymentRequestViewSet, basename="payment-request")

urlpatterns = router.urls
