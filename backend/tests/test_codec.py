"""
Pillow codec and resize helper tests.

Run:
    pytest backend/tests/test_codec.py -v
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image

from conftest import make_image, open_image
from converter.conversion.codec import EncodeOptions, PillowCodec
from converter.conversion.models import TargetFormat
from converter.conversion.resize import downscale_to_limit, prepare_mode, resize_keep_aspect
from converter.errors import DecodeError, ProcessingError


@pytest.fixture
def codec():
    return PillowCodec()


# ============================================
# decode
# ============================================

class TestDecode:

    @pytest.mark.parametrize("fmt", ["PNG", "JPEG", "WEBP", "GIF", "BMP", "TIFF"])
    def test_decode_supported_inputs(self, codec, fmt):
        mode = "P" if fmt == "GIF" else "RGB"
        decoded = codec.decode(make_image(fmt, size=(30, 20), mode=mode))

        assert decoded.format == fmt
        assert (decoded.width, decoded.height) == (30, 20)
        decoded.close()
        assert decoded.handle is None

    def test_decode_garbage_raises(self, codec):
        with pytest.raises(DecodeError, match="Unrecognized"):
            codec.decode(b"this is not an image at all")

    def test_decode_empty_raises(self, codec):
        with pytest.raises(DecodeError, match="Empty"):
            codec.decode(b"")

    def test_decode_truncated_png_raises(self, codec):
        data = make_image("PNG", size=(200, 200), color=(10, 200, 90))
        with pytest.raises(DecodeError):
            codec.decode(data[: len(data) // 2])

    def test_decode_rejects_decompression_bomb(self, codec, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        with pytest.raises(DecodeError, match="exceed"):
            codec.decode(make_image("PNG", size=(40, 40)))

    def test_decode_rejects_image_just_over_pixel_limit(self, codec, monkeypatch):
        # 150 px is inside the range where Pillow itself only warns
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        with pytest.raises(DecodeError, match="exceed"):
            codec.decode(make_image("PNG", size=(15, 10)))

    def test_pixel_limit_holds_across_threads(self, codec, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        small = make_image("PNG", size=(8, 8))
        large = make_image("PNG", size=(15, 10))

        def decode(data):
            try:
                codec.decode(data).close()
                return "ok"
            except DecodeError:
                return "rejected"

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(decode, [small, large] * 20))

        assert results == ["ok", "rejected"] * 20


# ============================================
# transcode
# ============================================

class TestTranscode:

    @pytest.mark.parametrize("target,pil_name", [
        (TargetFormat.JPEG, "JPEG"),
        (TargetFormat.PNG, "PNG"),
        (TargetFormat.WEBP, "WEBP"),
    ])
    def test_transcode_to_each_target(self, codec, target, pil_name):
        decoded = codec.decode(make_image("PNG", size=(32, 16)))
        out = codec.transcode(decoded, target, EncodeOptions())

        img = open_image(out)
        assert img.format == pil_name
        assert img.size == (32, 16)

    def test_rgba_to_jpeg_is_flattened(self, codec):
        decoded = codec.decode(make_image("PNG", mode="RGBA", color=(0, 0, 255, 0)))
        img = open_image(codec.transcode(decoded, TargetFormat.JPEG, EncodeOptions()))

        assert img.mode == "RGB"
        # fully transparent pixels land on the white background
        r, g, b = img.getpixel((5, 5))
        assert min(r, g, b) > 240

    def test_palette_gif_to_webp(self, codec):
        decoded = codec.decode(make_image("GIF", mode="P"))
        img = open_image(codec.transcode(decoded, TargetFormat.WEBP, EncodeOptions()))

        assert img.format == "WEBP"

    def test_png_stays_lossless(self, codec):
        decoded = codec.decode(make_image("PNG", size=(8, 8), color=(1, 2, 3)))
        img = open_image(codec.transcode(decoded, TargetFormat.PNG, EncodeOptions()))

        assert img.convert("RGB").getpixel((0, 0)) == (1, 2, 3)

    def test_oversized_input_is_downscaled(self, codec):
        decoded = codec.decode(make_image("PNG", size=(400, 200)))
        out = codec.transcode(decoded, TargetFormat.PNG, EncodeOptions(max_dimension=100))

        assert open_image(out).size == (100, 50)

    def test_released_handle_raises(self, codec):
        decoded = codec.decode(make_image("PNG"))
        decoded.close()

        with pytest.raises(ProcessingError):
            codec.transcode(decoded, TargetFormat.PNG, EncodeOptions())


# ============================================
# resize helpers
# ============================================

class TestResize:

    def test_resize_keep_aspect_width_only(self):
        img = Image.new("RGB", (200, 100))
        assert resize_keep_aspect(img, target_width=50).size == (50, 25)

    def test_resize_keep_aspect_box(self):
        img = Image.new("RGB", (100, 400))
        assert resize_keep_aspect(img, 100, 100).size == (25, 100)

    def test_downscale_within_limit_is_noop(self):
        img = Image.new("RGB", (100, 80))
        out, changed = downscale_to_limit(img, 100)

        assert out is img
        assert changed is False

    def test_downscale_disabled_with_zero(self):
        img = Image.new("RGB", (5000, 10))
        assert downscale_to_limit(img, 0)[1] is False

    def test_prepare_mode_cmyk_for_png(self):
        img = Image.new("CMYK", (4, 4))
        assert prepare_mode(img, "PNG").mode == "RGB"

    def test_prepare_mode_grayscale_for_jpeg_becomes_rgb(self):
        img = Image.new("L", (4, 4))
        assert prepare_mode(img, "JPEG").mode == "RGB"
