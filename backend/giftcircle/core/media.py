from pathlib import Path

from giftcircle.core.config import settings


_BACKEND_DIR = Path(__file__).resolve().parents[2]

# Owner-scoped buckets accepted by the upload surface.
MEDIA_BUCKETS = ("avatars", "items")


def get_media_root() -> Path:
    root = Path(settings.media_root)
    if root.is_absolute():
        return root
    return _BACKEND_DIR / root


def ensure_media_dirs() -> None:
    root = get_media_root()
    for bucket in MEDIA_BUCKETS:
        (root / bucket).mkdir(parents=True, exist_ok=True)


def owner_dir(bucket: str, user_id: str) -> Path:
    # account ids are opaque; keep them path-safe
    safe_owner = "".join(ch for ch in user_id if ch.isalnum() or ch in "-_") or "anonymous"
    return get_media_root() / bucket / safe_owner


def build_media_url(relative_path: str) -> str:
    base = settings.backend_url.rstrip("/")
    rel = relative_path.lstrip("/")
    return f"{base}{settings.media_path.rstrip('/')}/{rel}"
