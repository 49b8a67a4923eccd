from fastapi import APIRouter

from estate_api.api.routes import admin_posts, health, notifications, payment_scheduler, post_expiry, posts

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(posts.router, prefix="/api/posts", tags=["posts"])
api_router.include_router(admin_posts.router, prefix="/api/admin/posts", tags=["moderation"])
api_router.include_router(post_expiry.router, prefix="/api/admin/post-expiry", tags=["moderation"])
api_router.include_router(payment_scheduler.router, prefix="/api/payment-scheduler", tags=["payments"])
api_router.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
