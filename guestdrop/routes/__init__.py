"""
Routes package for GuestDrop API

Routes are organized by domain:
- health: Health check endpoints
- auth: Organizer registration and login
- subscription: Plans and the organizer's subscription
- tokens: Upload token management and public token info
- uploads: Guest uploads and owner file access
- dashboard: Organizer overview and durable storage status
- admin: Relay operations
"""
from .health import router as health_router
from .auth import router as auth_router
from .subscription import router as subscription_router
from .tokens import router as tokens_router
from .uploads import router as uploads_router
from .dashboard import router as dashboard_router
from .admin import router as admin_router

__all__ = [
    'health_router',
    'auth_router',
    'subscription_router',
    'tokens_router',
    'uploads_router',
    'dashboard_router',
    'admin_router',
]
