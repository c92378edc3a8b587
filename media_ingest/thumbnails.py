"""
ThumbnailGenerator - decode an original and render size variants with Pillow.
"""

import io
import logging
from typing import Dict, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from media_ingest.errors import DecodeError

# Formats whose variants stay lossless (and keep transparency).
LOSSLESS_SOURCE_FORMATS = frozenset({"PNG", "GIF"})


class RenderedVariant:
    """Encoded bytes for one variant plus its pixel dimensions."""

    def __init__(self, data: bytes, width: int, height: int, content_type: str):
        self.data = data
        self.width = width
        self.height = height
        self.content_type = content_type

    def __repr__(self) -> str:
        return (
            f"RenderedVariant({self.width}x{self.height}, {self.content_type}, "
            f"{len(self.data)} bytes)"
        )


class ThumbnailGenerator:
    """
    Renders aspect-preserving variants of an image.

    Output depends only on the input bytes and settings: no timestamps or
    other metadata are written, so re-running on the same original yields
    the same variants.
    """

    def __init__(
        self,
        variant_sizes: Dict[str, int],
        quality: int = 85,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize thumbnail generator.

        Args:
            variant_sizes: Mapping of label to maximum dimension in pixels
            quality: JPEG quality for output (default: 85)
            logger: Optional logger instance
        """
        self.variant_sizes = dict(variant_sizes)
        self.quality = quality
        self.logger = logger or logging.getLogger(__name__)

    def generate(self, image_data: bytes) -> Dict[str, RenderedVariant]:
        """
        Render every configured variant from the original bytes.

        Raises:
            DecodeError: If the bytes are not a supported, intact image
        """
        img, source_format = self.decode(image_data)
        output_format, content_type = self._get_output_format(source_format)
        prepared = self._convert_color_mode(img, output_format)

        variants = {}
        for label, max_dimension in self.variant_sizes.items():
            variant = prepared.copy()
            variant.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
            variants[label] = RenderedVariant(
                data=self._encode(variant, output_format),
                width=variant.width,
                height=variant.height,
                content_type=content_type,
            )
        return variants

    def decode(self, image_data: bytes) -> Tuple[Image.Image, str]:
        """Decode bytes into an upright image and report its source format."""
        try:
            img = Image.open(io.BytesIO(image_data))
            source_format = img.format or ""
            img.load()
            img = ImageOps.exif_transpose(img)
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Unsupported or unsafe image: {e}") from e
        except (OSError, SyntaxError, ValueError) as e:
            raise DecodeError(f"Corrupt image data: {e}") from e
        return img, source_format

    def _encode(self, img: Image.Image, output_format: str) -> bytes:
        output = io.BytesIO()
        if output_format == "PNG":
            img.save(output, format="PNG", optimize=True)
        else:
            img.save(output, format="JPEG", quality=self.quality, optimize=True)
        return output.getvalue()

    def _convert_color_mode(self, img: Image.Image, output_format: str) -> Image.Image:
        """Convert image to a color mode the output format can store."""
        if output_format == "PNG":
            if img.mode == "P":
                return img.convert("RGBA")
            if img.mode not in ("RGB", "RGBA", "L", "LA"):
                return img.convert("RGBA")
            return img

        if img.mode in ("RGBA", "LA", "P"):
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        if img.mode != "RGB":
            return img.convert("RGB")
        return img

    def _get_output_format(self, source_format: str) -> Tuple[str, str]:
        """Determine output format based on the decoded source format."""
        if source_format.upper() in LOSSLESS_SOURCE_FORMATS:
            return "PNG", "image/png"
        return "JPEG", "image/jpeg"
