"""
Small helpers shared by ingestion, notifications and middleware
"""
from datetime import datetime, timezone
from typing import Optional
import uuid


def generate_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"

# ============================================================
# Time
# ============================================================

def utcnow() -> datetime:
    """Timezone-aware now; every stored timestamp is UTC"""
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# ============================================================
# Log-safe formatting
# ============================================================

def truncate_string(s: str, max_length: int = 100) -> str:
    return s if len(s) <= max_length else f"{s[:max_length]}..."

def mask_email(email: str, visible_chars: int = 2) -> str:
    """
    Hide most of the local part of an address
    Example: "grower@example.com" -> "gr****@example.com"
    """
    local, sep, domain = email.partition("@")
    if len(local) <= visible_chars:
        masked = "*" * len(local)
    else:
        masked = local[:visible_chars] + "*" * (len(local) - visible_chars)
    return f"{masked}{sep}{domain}"
