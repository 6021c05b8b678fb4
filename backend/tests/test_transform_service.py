import io

import pytest
from PIL import Image

from comicfit.core.devices import Device
from comicfit.core.enums import (
    ImageFormat,
    MarginColor,
    PageErrorKind,
    ReadingDirection,
    SplitStrategy,
)
from comicfit.core.errors import PageError
from comicfit.models.config import ProcessingConfig
from comicfit.models.page import RawPage
from comicfit.services.transform_service import (
    adjust_colors,
    auto_crop,
    color_lut,
    decode,
    encode,
    fill_margins,
    find_content_box,
    output_file_name,
    resize_to_device,
    transform_page,
)

DEVICE = Device(name="Test", width=1000, height=1400)


def plain_config(**overrides) -> ProcessingConfig:
    """Sin recorte ni color: sólo lo que cada test quiera activar."""
    values = dict(
        device=DEVICE,
        image_format=ImageFormat.PNG,
        split=SplitStrategy.NONE,
        reading_direction=ReadingDirection.RTL,
        auto_crop=False,
        brightness=0,
        gamma=1.0,
    )
    values.update(overrides)
    return ProcessingConfig(**values)


def to_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, "PNG")
    return buffer.getvalue()


def spread_png() -> bytes:
    """2000x1400: mitad izquierda negra, mitad derecha blanca."""
    img = Image.new("L", (2000, 1400), 255)
    img.paste(0, (0, 0, 1000, 1400))
    return to_png(img)


def open_page(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def test_undecodable_page_raises_decode_error():
    raw = RawPage(index=3, name="broken.png", data=b"not an image")

    with pytest.raises(PageError) as info:
        transform_page(raw, plain_config())

    assert info.value.page_kind == PageErrorKind.DECODE
    assert info.value.source_index == 3


def test_decode_flattens_alpha_on_white():
    img = Image.new("RGBA", (4, 4), (0, 0, 0, 0))

    decoded = decode(to_png(img), grayscale=True)

    assert decoded.mode == "L"
    assert decoded.getpixel((1, 1)) == 255


def test_split_spread_rtl_puts_right_half_first():
    raw = RawPage(index=0, name="spread.png", data=spread_png())

    pages = transform_page(raw, plain_config(split=SplitStrategy.SPLIT))

    assert [p.sub_index for p in pages] == [0, 1]
    assert sum(p.width for p in pages) == 2000
    first, second = (open_page(p.data) for p in pages)
    assert first.getpixel((500, 700)) == 255  # mitad derecha (blanca)
    assert second.getpixel((500, 700)) == 0  # mitad izquierda (negra)


def test_split_spread_ltr_keeps_left_half_first():
    raw = RawPage(index=0, name="spread.png", data=spread_png())

    pages = transform_page(
        raw,
        plain_config(split=SplitStrategy.SPLIT, reading_direction=ReadingDirection.LTR),
    )

    assert open_page(pages[0].data).getpixel((500, 700)) == 0


def test_rotate_spread_fits_device_in_portrait():
    raw = RawPage(index=0, name="spread.png", data=spread_png())

    pages = transform_page(raw, plain_config(split=SplitStrategy.ROTATE))

    assert len(pages) == 1
    page = pages[0]
    assert page.height == 1400
    assert page.width <= 1000
    assert page.width < page.height


def test_rotate_split_produces_rotated_page_and_halves():
    raw = RawPage(index=7, name="spread.png", data=spread_png())

    pages = transform_page(raw, plain_config(split=SplitStrategy.ROTATE_SPLIT))

    assert [p.sort_key for p in pages] == [(7, 0), (7, 1), (7, 2)]
    assert pages[0].file_name == "0007_spread_000.png"


def test_portrait_page_is_never_split():
    raw = RawPage(index=0, name="p.png", data=to_png(Image.new("L", (700, 1000), 128)))

    pages = transform_page(raw, plain_config(split=SplitStrategy.ROTATE_SPLIT))

    assert len(pages) == 1


def test_resize_keeps_aspect_and_respects_upscale_flag():
    small = Image.new("L", (500, 700), 0)
    big = Image.new("L", (3000, 4200), 0)

    assert resize_to_device(small, DEVICE, upscale=True).size == (1000, 1400)
    assert resize_to_device(small, DEVICE, upscale=False).size == (500, 700)
    assert resize_to_device(big, DEVICE, upscale=False).size == (1000, 1400)

    wide = resize_to_device(Image.new("L", (1200, 1200), 0), DEVICE)
    assert wide.size == (1000, 1000)


def test_fill_margins_centers_page_on_device_canvas():
    img = Image.new("L", (500, 1400), 0)

    filled = fill_margins(img, DEVICE, MarginColor.WHITE)

    assert filled.size == DEVICE.dimensions
    assert filled.getpixel((0, 0)) == 255
    assert filled.getpixel((500, 700)) == 0
    assert fill_margins(img, DEVICE, MarginColor.NONE) is img


def test_auto_crop_stops_at_content():
    img = Image.new("L", (1000, 1400), 255)
    img.paste(Image.effect_noise((600, 800), 64), (200, 300))

    box = find_content_box(img, plain_config())

    assert box == (198, 298, 802, 1102)


def test_auto_crop_keeps_minimum_content_on_blank_page():
    img = Image.new("L", (1000, 1400), 255)

    left, top, right, bottom = find_content_box(img, plain_config())

    assert right - left >= 500
    assert bottom - top >= 700


def test_auto_crop_keeps_lines_exactly_at_threshold():
    # Cada columna: 50 px negros y 50 blancos -> varianza 127.5² = 16256.25
    img = Image.new("L", (100, 100), 255)
    img.paste(0, (0, 0, 100, 50))

    left, _, right, _ = find_content_box(img, plain_config(crop_variance_threshold=16256.25))

    assert (left, right) == (0, 100)


def test_auto_crop_ignores_thin_margins():
    img = Image.new("L", (400, 600), 255)
    img.paste(Image.effect_noise((390, 590), 64), (5, 5))

    assert auto_crop(img, plain_config()) is img


def test_color_lut_applies_brightness_then_gamma():
    assert color_lut(0, 1.0) == tuple(range(256))

    lut = color_lut(-10, 1.8)
    assert lut[0] == 0
    assert lut[10] == 0
    assert lut[255] < 255
    assert list(lut) == sorted(lut)


def test_adjust_colors_is_noop_without_correction():
    img = Image.new("L", (4, 4), 100)

    assert adjust_colors(img, 0, 1.0) is img
    assert adjust_colors(img, 20, 1.0).getpixel((0, 0)) == 120


def test_png_encode_without_transforms_keeps_pixels():
    img = Image.effect_noise((64, 96), 40)
    config = plain_config(device=Device(width=64, height=96))

    pages = transform_page(RawPage(index=0, name="p.png", data=to_png(img)), config)

    assert len(pages) == 1
    assert list(open_page(pages[0].data).getdata()) == list(img.getdata())


def test_jpeg_quality_changes_output_size():
    img = Image.effect_noise((200, 200), 60)

    low = encode(img, plain_config(image_format=ImageFormat.JPEG, quality=20))
    high = encode(img, plain_config(image_format=ImageFormat.JPEG, quality=95))

    assert low[:2] == b"\xff\xd8"
    assert len(low) < len(high)


def test_output_file_name_uses_index_stem_and_extension():
    raw = RawPage(index=3, name="chapter 1/p01.png", data=b"x")

    assert output_file_name(raw, 0, ImageFormat.JPEG) == "0003_p01_000.jpg"
    assert output_file_name(raw, 2, ImageFormat.WEBP) == "0003_p01_002.webp"
