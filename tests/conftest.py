import io

import pytest
from PIL import Image


def to_png(img):
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    """Encode a Pillow image as PNG bytes."""
    return to_png


@pytest.fixture
def solid():
    """Build a single-color RGBA image."""
    def make(color, size=(8, 8)):
        return Image.new("RGBA", size, color)
    return make


@pytest.fixture
def blank():
    """Build a fully transparent RGBA image with a few opaque pixels."""
    def make(pixels=None, size=(8, 8)):
        img = Image.new("RGBA", size, (0, 0, 0, 0))
        for xy, color in (pixels or {}).items():
            img.putpixel(xy, color)
        return img
    return make
