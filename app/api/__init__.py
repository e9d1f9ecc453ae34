"""LinkLedger API routes."""

from app.api.channels import router as channels_router
from app.api.conversions import router as conversions_router
from app.api.efficiency import router as efficiency_router
from app.api.redirect import router as redirect_router
from app.api.tracking_links import router as tracking_links_router

__all__ = [
    "channels_router",
    "conversions_router",
    "efficiency_router",
    "redirect_router",
    "tracking_links_router",
]
