from rest_framework.routers import DefaultRouter

from apps.customers.views import CustomerRequestViewSet, CustomerViewSet

router = DefaultRouter()
router.register("customers", CustomerViewSet, basename="customer")
router.register("customer-requests", CustomerRequestViewSet, basename="customer-request")

urlpatterns = router.urls
