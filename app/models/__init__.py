"""SQLAlchemy models for the reconciliation core."""

from app.models.ad_channel import AdChannel, AdPlatform, ChannelStatus
from app.models.alert import Alert, EfficiencyTier
from app.models.campaign import Campaign, CampaignStatus
from app.models.conversion import Conversion, ConversionForward, ForwardStatus, MatchMethod
from app.models.seller import Seller
from app.models.tracking import ClickEvent, LinkStatus, TrackingLink

__all__ = [
    "Seller",
    "Campaign",
    "CampaignStatus",
    "TrackingLink",
    "LinkStatus",
    "ClickEvent",
    "Conversion",
    "ConversionForward",
    "ForwardStatus",
    "MatchMethod",
    "AdChannel",
    "AdPlatform",
    "ChannelStatus",
    "Alert",
    "EfficiencyTier",
]
