from django.urls import path
from rest_framework.routers import DefaultRouter

from apps.accounts.views import MeView, MyPermissionsView, RoleViewSet, UserViewSet

router = DefaultRouter()
router.register("roles", RoleViewSet, basename="role")
router.register("users", UserViewSet, basename="user")

urlpatterns = [
    path("auth/me/", MeView.as_view(), name="auth-me"),
    path("roles/my-permissions/", MyPermissionsView.as_view(), name="role-my-permissions"),
]
urlpatterns += router.urls
