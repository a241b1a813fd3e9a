MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "heic": "image/heic",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

PHOTO_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "heic"}
ATTACHMENT_EXTENSIONS = PHOTO_EXTENSIONS | {"pdf"}


def extension_of(file_name: str) -> str:
    base = file_name.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


def mime_type_for(file_name: str) -> str:
    # Archive members carry no content type; storage rejects octet-stream images
    return MIME_TYPES.get(extension_of(file_name), DEFAULT_MIME_TYPE)


def is_accepted(file_name: str, kind: str) -> bool:
    ext = extension_of(file_name)
    if kind == "photos":
        return ext in PHOTO_EXTENSIONS
    return ext in ATTACHMENT_EXTENSIONS
