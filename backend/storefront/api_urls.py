"""
Main API URL configuration for Storefront.
Consolidates all app API endpoints.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
    TokenVerifyView
)

from apps.group_buys.views import GroupBuyViewSet
from apps.orders.views import OrderViewSet

# Create main router
router = DefaultRouter()

router.register(r'group-buys', GroupBuyViewSet, basename='groupbuy')
router.register(r'orders', OrderViewSet, basename='order')

# API URL patterns
urlpatterns = [
    # JWT Authentication endpoints
    path('auth/login/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('auth/verify/', TokenVerifyView.as_view(), name='token_verify'),

    # Router URLs
    path('', include(router.urls)),
]
