"""Image format sniffing from magic bytes."""


def detect_media_type(image_bytes: bytes) -> str:
    """Detect the MIME type of an image from its magic bytes.

    PNG starts with: 89 50 4E 47 0D 0A 1A 0A
    GIF starts with: GIF8
    WEBP starts with: RIFF....WEBP
    JPEG starts with: FF D8
    """
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes[:2] == b"\xff\xd8":
        return "image/jpeg"
    return "image/png"  # rendered pages are PNG


_EXTENSIONS = {
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/jpeg": ".jpg",
}


def image_extension(media_type: str) -> str:
    """File extension for an image MIME type from :func:`detect_media_type`."""
    return _EXTENSIONS.get(media_type, ".png")
