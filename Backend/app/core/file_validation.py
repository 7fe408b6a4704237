"""
file_validation.py
~~~~~~~~~~~~~~~~~~
Security hardening for file uploads.
Validates file content using Magic Numbers (signatures) instead of just extensions.
"""
import logging
from fastapi import UploadFile, HTTPException

logger = logging.getLogger(__name__)

# Magic Numbers (File Signatures)
SIGNATURES = {
    "pdf":  b"%PDF",
    # Office Open XML (docx, xlsx) - technically ZIP archives
    "docx": b"\x50\x4B\x03\x04",
    "xlsx": b"\x50\x4B\x03\x04",
    # Legacy Microsoft Office (xls) - OLE2 Compound File
    "xls":  b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1",
    "png":  b"\x89PNG\r\n\x1a\n",
    "jpg":  b"\xFF\xD8\xFF",
}

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")


def _extension(filename: str) -> str:
    dot = filename.rfind(".")
    return filename[dot:].lower() if dot != -1 else ""


async def validate_file_signature(file: UploadFile) -> None:
    """
    Validate file content matches its extension using magic numbers.
    Raises HTTPException(400) if invalid.
    Resets file pointer to 0 after checking.
    """
    filename = (file.filename or "").lower()
    ext = _extension(filename)

    # Read start of file
    await file.seek(0)
    header = await file.read(12)
    await file.seek(0)  # Reset immediately

    if ext == ".pdf":
        expected, label = SIGNATURES["pdf"], "PDF"
    elif ext in (".docx", ".xlsx"):
        expected, label = SIGNATURES[ext[1:]], "ZIP"
    elif ext == ".xls":
        expected, label = SIGNATURES["xls"], "OLE2"
    elif ext == ".png":
        expected, label = SIGNATURES["png"], "PNG"
    elif ext in (".jpg", ".jpeg"):
        expected, label = SIGNATURES["jpg"], "JPEG"
    elif ext == ".webp":
        # RIFF....WEBP
        if not (header.startswith(b"RIFF") and header[8:12] == b"WEBP"):
            logger.warning(f"Validation failed: {filename} claims to be WEBP but lacks RIFF/WEBP signature.")
            raise HTTPException(
                status_code=400,
                detail="Invalid file content. Extension says .webp but content does not match."
            )
        return
    else:
        raise HTTPException(status_code=400, detail=f"Unsupported file extension: '{ext or filename}'")

    if not header.startswith(expected):
        logger.warning(f"Validation failed: {filename} claims to be {ext} but lacks {label} signature.")
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file content. Extension says {ext} but content does not match ({label} signature missing)."
        )
