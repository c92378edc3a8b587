"""Unit tests for thumbnail generation."""

import io

import pytest
from PIL import Image

from media_ingest.errors import DecodeError
from media_ingest.thumbnails import ThumbnailGenerator


@pytest.fixture
def generator():
    return ThumbnailGenerator({"thumb": 128, "medium": 512})


def _open(data):
    return Image.open(io.BytesIO(data))


def test_generate_preserves_aspect_ratio(generator, make_image):
    """Test that each variant fits its bounding box."""
    variants = generator.generate(make_image("JPEG", size=(1600, 1200)))

    assert set(variants) == {"thumb", "medium"}
    assert (variants["thumb"].width, variants["thumb"].height) == (128, 96)
    assert (variants["medium"].width, variants["medium"].height) == (512, 384)
    assert _open(variants["thumb"].data).size == (128, 96)


def test_generate_never_upscales(generator, make_image):
    variants = generator.generate(make_image("JPEG", size=(100, 50)))

    assert (variants["medium"].width, variants["medium"].height) == (100, 50)


def test_portrait_image(generator, make_image):
    variants = generator.generate(make_image("JPEG", size=(600, 1200)))

    assert (variants["thumb"].width, variants["thumb"].height) == (64, 128)


def test_jpeg_source_produces_jpeg(generator, make_image):
    variants = generator.generate(make_image("JPEG"))

    assert variants["thumb"].content_type == "image/jpeg"
    assert _open(variants["thumb"].data).format == "JPEG"


def test_png_source_keeps_transparency(generator, make_image):
    variants = generator.generate(make_image("PNG", mode="RGBA"))

    thumb = _open(variants["thumb"].data)
    assert variants["thumb"].content_type == "image/png"
    assert thumb.format == "PNG"
    assert thumb.mode == "RGBA"


def test_gif_source_produces_png(generator, make_image):
    variants = generator.generate(make_image("GIF"))

    assert variants["thumb"].content_type == "image/png"


def test_webp_with_alpha_flattened_to_jpeg(generator, make_image):
    variants = generator.generate(make_image("WEBP", mode="RGBA"))

    thumb = _open(variants["thumb"].data)
    assert variants["thumb"].content_type == "image/jpeg"
    assert thumb.mode == "RGB"


def test_grayscale_source(generator, make_image):
    variants = generator.generate(make_image("JPEG", mode="L"))

    assert _open(variants["thumb"].data).mode == "RGB"


def test_output_is_deterministic(generator, make_image):
    """Test that re-rendering the same original yields identical bytes."""
    original = make_image("JPEG", size=(1024, 768))

    first = generator.generate(original)
    second = generator.generate(original)

    for label in first:
        assert first[label].data == second[label].data


def test_undecodable_bytes_raise_decode_error(generator):
    with pytest.raises(DecodeError):
        generator.generate(b"definitely not an image")


def test_truncated_image_raises_decode_error(generator, make_image):
    data = make_image("PNG", size=(400, 400))

    with pytest.raises(DecodeError):
        generator.generate(data[: len(data) // 2])


def test_decompression_bomb_raises_decode_error(generator, make_image, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(DecodeError):
        generator.generate(make_image("PNG", size=(200, 200)))
