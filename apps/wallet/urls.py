from rest_framework.routers import DefaultRouter

from apps.wallet.views import ForwardRequestViewSet, WalletViewSet

router = DefaultRouter()
router.register("wallet", WalletViewSet, basename="wallet")
router.register("forward-requests", ForwardRequestViewSet, basename="forward-request")

urlpatterns = router.urls
