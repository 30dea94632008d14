from .stroke_service import StrokeServiceClient, compute_hmac
from .vision_service import VisionReply, VisionServiceClient

__all__ = [
    "StrokeServiceClient",
    "VisionReply",
    "VisionServiceClient",
    "compute_hmac",
]
