"""Upload size checks. Run after schema validation and before any charge."""

from imagegate.core.config import MB, settings
from imagegate.core.exceptions import FileTooLargeError
from imagegate.gateway.types import Tier


def get_base64_size(data: str) -> int:
    """Decoded byte size of a base64 payload (data URL prefix allowed)."""
    if "," in data:
        data = data.split(",", 1)[1]
    padding = data.count("=")
    return (len(data) * 3) // 4 - padding


def check_guest_size(image_data: str, max_bytes: int | None = None) -> int:
    limit = settings.guest_max_file_bytes if max_bytes is None else max_bytes
    size = get_base64_size(image_data)
    if size > limit:
        raise FileTooLargeError(
            f"File too large. Guest limit is {limit // MB}MB. Sign up for larger uploads.",
            details={"sizeBytes": size, "maxBytes": limit},
        )
    return size


def check_tier_size(image_data: str, tier: Tier, max_bytes: int | None = None) -> int:
    limit = settings.max_upload_bytes(tier.value) if max_bytes is None else max_bytes
    size = get_base64_size(image_data)
    if size > limit:
        raise FileTooLargeError(
            f"Image size ({size / MB:.1f}MB) exceeds maximum allowed for your tier ({limit // MB}MB)",
            details={"sizeBytes": size, "maxBytes": limit},
        )
    return size
