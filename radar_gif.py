# -*- coding: utf-8 -*-
#
#  radar_gif.py - Composite radar overlays and sweeps into an animated GIF.
#                 Decodes the overlay transparencies, stacks them into one
#                 base map, stamps each radar sweep over a copy of the map,
#                 reduces every frame to a shared palette and encodes the
#                 frames as one looping animation.
#
#  This program is free software: you can redistribute it and/or modify
#  it under the terms of the GNU General Public License as published by
#  the Free Software Foundation, either version 3 of the License, or
#  (at your option) any later version.
#
#  This program is distributed in the hope that it will be useful,
#  but WITHOUT ANY WARRANTY; without even the implied warranty of
#  MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
#  GNU General Public License for more details.
#
#  You should have received a copy of the GNU General Public License
#  along with this program. If not, see <http://www.gnu.org/licenses/>.
#
import io
from dataclasses import dataclass
from dataclasses import field

from PIL import Image
from PIL import GifImagePlugin
from PIL import ImageChops

# Channel levels of the 216 color web-safe palette
WEB_SAFE_LEVELS = (0x00, 0x33, 0x66, 0x99, 0xcc, 0xff)


class RadarGifError(Exception):
    """Base class for everything that can abort a radar GIF build"""


class DecodeError(RadarGifError):
    pass


class CompositeError(RadarGifError):
    pass


class DimensionMismatchError(CompositeError):
    pass


class SelectionError(RadarGifError):
    pass


class EncodeError(RadarGifError):
    pass


def decode_raster(data, name=None):
    """ Decode raster bytes into an RGBA image """
    label = name or '<bytes>'
    if not data:
        raise DecodeError('{name} is empty'.format(name=label))
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, SyntaxError, ValueError) as err:
        raise DecodeError('could not decode {name}: {err}'.format(
            name=label, err=err)) from err
    return img.convert('RGBA')


def encode_png(img):
    """ Encode an image as PNG bytes """
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def composite_layers(layers):
    """
    Stack layers into one true-color canvas.

    The first layer replaces the canvas outright, every later layer is
    alpha composited over the result in the order given.
    """
    layers = list(layers)
    if not layers:
        raise CompositeError('no layers to composite')

    # convert() always hands back a new image, the caller's layer is untouched
    canvas = layers[0].convert('RGBA')

    for index, layer in enumerate(layers[1:], start=1):
        if layer.size != canvas.size:
            raise DimensionMismatchError(
                'layer {i} is {w}x{h}, base is {bw}x{bh}'.format(
                    i=index, w=layer.width, h=layer.height,
                    bw=canvas.width, bh=canvas.height))
        canvas = Image.alpha_composite(canvas, layer.convert('RGBA'))
    return canvas


def sweep_timestamp(name, delimiter='.'):
    """
    Return the integer token in the second-to-last segment of a name,
    e.g. 202310190654 for IDR71B.T.202310190654.png, or None.
    """
    segments = name.split(delimiter)
    if len(segments) < 2:
        return None
    try:
        return int(segments[-2])
    except ValueError:
        return None


def _sweep_sort_key(name, delimiter):
    timestamp = sweep_timestamp(name, delimiter)
    if timestamp is None:
        return (0, 0)
    return (1, timestamp)


def select_sweeps(names, match, count, delimiter='.'):
    """ Most recent `count` names containing `match`, oldest first """
    relevant = [name for name in names if match in name]
    relevant = sorted(relevant, key=lambda n: _sweep_sort_key(n, delimiter))
    return relevant[max(0, len(relevant) - count):]


class Palette:
    """
    A uniform color cube plus one fully transparent entry.

    Colors are ordered red-major, blue-minor, so the default levels give
    the standard web-safe palette with the transparent color at index 216.
    """
    def __init__(self, levels=WEB_SAFE_LEVELS):
        self.levels = tuple(levels)
        size = len(self.levels)
        if not size or size ** 3 + 1 > 256:
            raise ValueError(
                '{n} levels per channel do not fit in a 256 color palette'.format(n=size))
        self.colors = [(r, g, b)
                       for r in self.levels
                       for g in self.levels
                       for b in self.levels]
        self.transparent_index = len(self.colors)
        self._nearest = [self._nearest_level(value) for value in range(256)]

    def __len__(self):
        return len(self.colors) + 1

    def _nearest_level(self, value):
        # min() keeps the first of equally distant levels
        return min(range(len(self.levels)),
                   key=lambda i: abs(self.levels[i] - value))

    @property
    def palette_bytes(self):
        data = bytearray()
        for color in self.colors:
            data.extend(color)
        data.extend((0, 0, 0))
        return bytes(data)

    def quantize(self, img):
        """ Map every pixel to its nearest palette index """
        rgba = img.convert('RGBA')
        red, green, blue, alpha = rgba.split()
        size = len(self.levels)

        indices = ImageChops.add(
            ImageChops.add(
                red.point([level * size * size for level in self._nearest]),
                green.point([level * size for level in self._nearest])),
            blue.point(self._nearest))
        clear = alpha.point([255] + [0] * 255)
        indices.paste(self.transparent_index, (0, 0), clear)

        indexed = Image.frombytes('P', rgba.size, indices.tobytes())
        indexed.putpalette(self.palette_bytes)
        indexed.info['transparency'] = self.transparent_index
        return indexed


@dataclass
class Frame:
    image: Image.Image
    duration: int
    position: int = 0


class PalettedFrameBuilder:
    """Draw radar sweeps over a fixed base map as indexed frames"""
    def __init__(self, base, palette=None):
        self.palette = palette or Palette()
        self.size = base.size
        self._base = self.palette.quantize(base).convert('RGBA')

    def build(self, sweep, duration, position=0):
        if sweep.size != self.size:
            raise DimensionMismatchError(
                'sweep is {w}x{h}, base map is {bw}x{bh}'.format(
                    w=sweep.width, h=sweep.height,
                    bw=self.size[0], bh=self.size[1]))
        combined = Image.alpha_composite(self._base, sweep.convert('RGBA'))
        return Frame(self.palette.quantize(combined), duration, position)


@dataclass
class Animation:
    """
    Frames in display order plus a GIF loop count.

    A loop count of 0 loops forever and N repeats N times, as in the
    NETSCAPE2.0 extension. None leaves the extension out so the
    animation plays once.
    """
    frames: list = field(default_factory=list)
    loop_count: int | None = 0

    @property
    def durations(self):
        return [frame.duration for frame in self.frames]

    def validate(self):
        if not self.frames:
            raise EncodeError('cannot encode an animation with no frames')

        first = self.frames[0].image
        palette = first.getpalette()
        transparency = first.info.get('transparency')
        for index, frame in enumerate(self.frames):
            img = frame.image
            if img.mode != 'P':
                raise EncodeError('frame {i} is {mode}, not paletted'.format(
                    i=index, mode=img.mode))
            if img.size != first.size:
                raise EncodeError('frame {i} is {w}x{h}, first frame is {fw}x{fh}'.format(
                    i=index, w=img.width, h=img.height,
                    fw=first.width, fh=first.height))
            if img.getpalette() != palette:
                raise EncodeError('frame {i} does not share the animation palette'.format(
                    i=index))
            if img.info.get('transparency') != transparency:
                raise EncodeError('frame {i} has transparent index {t}, first frame has {ft}'.format(
                    i=index, t=img.info.get('transparency'), ft=transparency))
        if any(duration < 0 for duration in self.durations):
            raise EncodeError('frame durations must not be negative')

    def to_bytes(self):
        """
        Write the header once, then every frame in full with its own
        graphic control block. Identical frames stay separate frames and
        disposal 2 keeps clear pixels from showing the previous frame.
        """
        self.validate()
        first = self.frames[0].image
        transparency = first.info.get('transparency')

        info = {'optimize': False}
        if transparency is not None:
            info['transparency'] = transparency
        if self.loop_count is not None:
            info['loop'] = self.loop_count

        buf = io.BytesIO()
        try:
            header, _ = GifImagePlugin.getheader(first.copy(), info=info)
            for block in header:
                buf.write(block)
            for frame, duration in zip(self.frames, self.durations):
                params = {
                    # Pillow takes milliseconds, GIF stores centiseconds
                    'duration': duration * 10,
                    'disposal': 2,
                    'optimize': False,
                }
                if transparency is not None:
                    params['transparency'] = transparency
                for block in GifImagePlugin.getdata(frame.image, **params):
                    buf.write(block)
            buf.write(b';')
        except (OSError, ValueError) as err:
            raise EncodeError('could not encode animation: {err}'.format(err=err)) from err
        return buf.getvalue()


def assemble_animation(frames, loop_count=0):
    """ Encode frames, in the order given, as one animated GIF """
    return Animation(list(frames), loop_count).to_bytes()
