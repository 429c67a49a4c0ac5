# cardstudio/infrastructure/cloudinary/upload_file.py
from io import BytesIO

import cloudinary
import cloudinary.uploader

from cardstudio.config.settings import settings

# CLOUDINARY_URL is read by the SDK itself; split vars need an explicit config.
if settings.use_cloudinary and not settings.CLOUDINARY_URL:
    cloudinary.config(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        secure=True,
    )


def upload_bytes(
    data: bytes,
    public_id: str,
    folder: str = settings.UPLOAD_FOLDER,
    resource_type: str = "raw",
    overwrite: bool = True,
) -> str:
    """Upload an encoded file (a print sheet PDF) and return its secure URL."""
    res = cloudinary.uploader.upload(
        BytesIO(data),
        resource_type=resource_type,
        folder=folder,
        public_id=f"{public_id}.pdf" if resource_type == "raw" else public_id,
        overwrite=overwrite,
    )
    return res["secure_url"]
