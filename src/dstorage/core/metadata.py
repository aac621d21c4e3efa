import io
import mimetypes
import zipfile
from pathlib import Path
from typing import Dict, Any

from PIL import Image, UnidentifiedImageError

DEFAULT_MIME_TYPE = "application/octet-stream"

# headers declaring absurd dimensions raise DecompressionBombError, not OSError
IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)


class MetadataExtractor:
    """ Class to work out the registry ``file_type`` of an upload. """

    def detect_type(self, file_name: str, data: bytes = b"") -> str:
        """ Return a MIME type from the file name, falling back to the content. """
        mime_type, _ = mimetypes.guess_type(file_name or "")
        if mime_type:
            return mime_type
        if not data:
            return DEFAULT_MIME_TYPE
        return self._sniff(data)

    def extract(self, file_name: str, data: bytes) -> Dict[str, Any]:
        """ Analyze an in-memory upload and return a dictionary of metadata. """
        meta = {}

        # 1. MIME detection
        meta["mime_type"] = self.detect_type(file_name, data)
        meta["extension"] = Path(file_name or "").suffix.lower()
        meta["size"] = len(data)

        # 2. Image dimensions
        if meta["mime_type"].startswith("image/"):
            try:
                with Image.open(io.BytesIO(data)) as img:
                    meta["width"] = img.width
                    meta["height"] = img.height
                    meta["format"] = img.format
            except IMAGE_ERRORS as e:
                meta["extraction_error"] = f"Image error: {str(e)}"

        # 3. ZIP Archive Info
        elif meta["mime_type"] == "application/zip":
            try:
                with zipfile.ZipFile(io.BytesIO(data), 'r') as zf:
                    meta["file_count"] = len(zf.infolist())
            except zipfile.BadZipFile as e:
                meta["extraction_error"] = f"Zip error: {str(e)}"

        return meta

    def _sniff(self, data: bytes) -> str:
        # Content sniffing for uploads whose name has no usable extension.
        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = img.format
            if fmt and fmt in Image.MIME:
                return Image.MIME[fmt]
        except IMAGE_ERRORS:
            pass

        if data.startswith(b"%PDF-"):
            return "application/pdf"
        if zipfile.is_zipfile(io.BytesIO(data)):
            return "application/zip"
        return DEFAULT_MIME_TYPE
