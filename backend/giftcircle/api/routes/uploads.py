import io
import logging
from pathlib import Path
from typing import Literal
from uuid import uuid4

from fastapi import APIRouter, File, HTTPException, UploadFile, status
from pydantic import BaseModel
from PIL import Image, UnidentifiedImageError

from giftcircle.api.deps import CurrentUserIdDep
from giftcircle.core.config import settings
from giftcircle.core.media import build_media_url, ensure_media_dirs, get_media_root, owner_dir


logger = logging.getLogger("giftcircle.uploads")

router = APIRouter(prefix="/uploads", tags=["uploads"])


class UploadImageResponse(BaseModel):
    url: str
    thumb_url: str | None
    width: int
    height: int


_ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
_FORMAT_EXTENSIONS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


def _validate_upload(file: UploadFile, data: bytes) -> tuple[str, Image.Image]:
    if file.content_type not in _ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Поддерживаются только JPEG, PNG или WebP.",
        )

    max_bytes = int(settings.image_upload_max_mb) * 1024 * 1024
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Размер файла не должен превышать {settings.image_upload_max_mb} МБ.",
        )

    try:
        img = Image.open(io.BytesIO(data))
        img.verify()
        img = Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Файл не является корректным изображением.",
        ) from exc

    ext = _FORMAT_EXTENSIONS.get((img.format or "").upper())
    if ext is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Поддерживаются только JPEG, PNG или WebP.",
        )
    return ext, img


def _save_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        f.write(data)


def _save_thumbnail(img: Image.Image, path: Path) -> None:
    img_for_thumb = img.convert("RGB") if img.mode not in {"RGB", "RGBA"} else img
    if img_for_thumb.mode == "RGBA":
        background = Image.new("RGB", img_for_thumb.size, (255, 255, 255))
        background.paste(img_for_thumb, mask=img_for_thumb.split()[-1])
        img_for_thumb = background

    thumb = img_for_thumb.copy()
    thumb.thumbnail((int(settings.image_thumb_size), int(settings.image_thumb_size)))
    thumb.save(path, format="WEBP", quality=82, method=6)


@router.post("/{bucket}", response_model=UploadImageResponse)
async def upload_image(
    bucket: Literal["avatars", "items"],
    user_id: CurrentUserIdDep,
    file: UploadFile = File(...),
) -> UploadImageResponse:
    """Store an image under the caller's own folder and return its public URL."""
    ensure_media_dirs()
    data = await file.read(int(settings.image_upload_max_mb) * 1024 * 1024 + 1)
    ext, img = _validate_upload(file, data)

    target_dir = owner_dir(bucket, user_id)
    image_id = uuid4().hex
    original_path = target_dir / f"{image_id}.{ext}"
    thumb_path = target_dir / f"{image_id}_thumb.webp"

    try:
        _save_bytes(original_path, data)
    except OSError as exc:
        logger.error("Failed to save upload user_id=%s: %s", user_id, exc)
        raise HTTPException(status_code=500, detail="Не удалось сохранить изображение") from exc

    thumb_url = None
    try:
        _save_thumbnail(img, thumb_path)
        thumb_url = build_media_url(thumb_path.relative_to(get_media_root()).as_posix())
    except (OSError, ValueError) as exc:
        # the original is already stored
        logger.warning("Failed to create thumbnail user_id=%s: %s", user_id, exc)

    logger.info("Image uploaded bucket=%s user_id=%s bytes=%s", bucket, user_id, len(data))
    return UploadImageResponse(
        url=build_media_url(original_path.relative_to(get_media_root()).as_posix()),
        thumb_url=thumb_url,
        width=int(img.width),
        height=int(img.height),
    )
