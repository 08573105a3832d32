from imghost.schemas.upload import UploadForm

__all__ = [
    "UploadForm",
]
