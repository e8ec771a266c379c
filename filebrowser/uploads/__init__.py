from .content_types import sniff_content_type
from .pipeline import (
    BATCH_IMAGE_POLICY,
    SINGLE_UPLOAD_POLICY,
    UploadedFile,
    UploadPipeline,
    UploadPolicy,
    UploadRejected,
)

__all__ = [
    "BATCH_IMAGE_POLICY",
    "SINGLE_UPLOAD_POLICY",
    "UploadPipeline",
    "UploadPolicy",
    "UploadRejected",
    "UploadedFile",
    "sniff_content_type",
]
