"""
URL configuration for backend project.

The `urlpatterns` list routes URLs to views. For more information please see:
    https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.utils import extend_schema, extend_schema_view
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView, SpectacularRedocView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

token_obtain_view = extend_schema_view(post=extend_schema(tags=['Auth']))(TokenObtainPairView)
token_refresh_view = extend_schema_view(post=extend_schema(tags=['Auth']))(TokenRefreshView)

urlpatterns = [
    path('admin/', admin.site.urls),

    # API Documentation
    path('api/schema/', SpectacularAPIView.as_view(), name='schema'),
    path('api/docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('api/redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),

    # JWT
    path('api/v1/token/', token_obtain_view.as_view(), name='token_obtain_pair'),
    path('api/v1/token/refresh/', token_refresh_view.as_view(), name='token_refresh'),

    # API v1 endpoints (versioned)
    path('api/v1/', include('returns.urls')),

    # Backward compatible endpoints (without version prefix)
    path('api/', include('returns.urls')),
]
