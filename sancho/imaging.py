"""Image effects (compression artefacts, palette remapping, speech bubbles, the lament gif) and their commands."""

from __future__ import annotations

import functools
import math
from io import BytesIO
from pathlib import Path

import requests
from PIL import (
    Image,
    ImageChops,
    ImageEnhance,
    ImageOps,
    ImageSequence,
    ImageStat,
)

from .instance import OutgoingFile
from .misc import sadness

IMAGE_DIR = Path("img")
PALETTE_FILE = IMAGE_DIR / "obesk.png"
MASK_FILE = IMAGE_DIR / "mask.png"
LAMENT_FILE = IMAGE_DIR / "lmd.gif"
DOWNLOAD_TIMEOUT = 30

I_KNOW = "I know what you are."
CDN_UNSUPPORTED = (
    "Unfortunately, Discord CDN link attachments are not supported. "
    "My creator tried their best."
)
NOT_AN_IMAGE = "Please send an actual image."

# (frame, scale percent, centre x, centre y) for each frame the avatar appears in.
LAMENT_FRAMES = (
    (16, 105, 409, 153), (17, 100, 418, 146), (18, 100, 378, 147),
    (27, 100, 249, 167), (28, 95, 249, 167), (29, 93, 249, 167),
    (30, 90, 249, 167), (31, 87, 249, 167), (32, 85, 248, 154),
    (33, 85, 245, 142), (34, 85, 281, 119), (35, 85, 270, 90),
    (38, 85, 238, 66), (39, 78, 263, 77), (40, 70, 291, 88),
    (41, 66, 294, 91), (42, 63, 298, 91), (43, 63, 300, 91),
    (51, 85, 292, 49), (52, 80, 298, 65), (53, 80, 307, 70),
    (54, 78, 313, 75), (55, 77, 315, 73), (65, 170, 438, -11),
    (66, 165, 408, 11), (67, 160, 404, 10), (68, 155, 389, 17),
    (91, 70, 393, 148), (92, 65, 378, 147), (93, 57, 375, 147),
    (94, 56, 373, 146), (95, 55, 371, 146), (96, 54, 369, 146),
    (97, 53, 367, 146), (98, 52, 365, 146), (99, 52, 364, 146),
    (100, 51, 363, 146), (101, 51, 362, 146), (102, 50, 361, 146),
    (103, 50, 360, 146), (104, 49, 359, 146), (105, 49, 358, 146),
)

_SIGMOID_CONTRAST = 10.0
_SIGMOID_MIDPOINT = 0.5 + 1024 / 65535
_CORRU_LEVELS = 12


class ImageError(ValueError):
    """Raised when an image cannot be fetched, read or processed.

    ``reply`` is the text shown to the user who asked.
    """

    def __init__(self, detail, reply=I_KNOW):
        super().__init__(detail)
        self.reply = reply


def _open(data):
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageError(f"cannot read image: {exc}") from exc
    return image


def _load_frames(data):
    image = _open(data)
    frames = []
    durations = []
    try:
        for frame in ImageSequence.Iterator(image):
            frames.append(frame.convert("RGBA"))
            durations.append(frame.info.get("duration", 0))
    except (OSError, ValueError) as exc:
        raise ImageError(f"cannot read image frames: {exc}") from exc
    return frames, durations, image.info.get("loop")


def _encode(image, fmt, **params):
    buffer = BytesIO()
    image.save(buffer, fmt, **params)
    return buffer.getvalue()


def _save_gif(frames, durations, loop):
    params = {
        "save_all": True,
        "append_images": frames[1:],
        "duration": durations,
        "disposal": 1,
    }
    if loop is not None:
        params["loop"] = loop
    return _encode(frames[0], "GIF", **params)


def _extension(data):
    fmt = (_open(data).format or "").upper()
    return {"JPEG": "jpg"}.get(fmt, fmt.lower() or "bin")


def _jpeg_quality(quality):
    return min(max(int(quality), 1), 100)


def _jpeg_roundtrip(image, quality):
    return _open(_encode(image.convert("RGB"), "JPEG", quality=_jpeg_quality(quality))).convert("RGB")


def _jpegify_frame(image, quality):
    image = image.convert("RGB")
    if quality < 2:
        width, height = image.size
        factor = max(width // 160, height // 120, 1)
        small = ImageEnhance.Color(image).enhance(1.5)
        small = small.resize(
            (max(1, int(width / factor)), max(1, int(height / factor))),
            Image.Resampling.BOX,
        )
        small = _jpeg_roundtrip(small, quality)
        image = ImageOps.posterize(small.resize((width, height), Image.Resampling.BOX), 4)
    return _encode(image, "JPEG", quality=_jpeg_quality(quality))


def jpegify(data, quality):
    """Re-encode an image with heavy JPEG damage; animations stay GIFs."""
    frames, durations, loop = _load_frames(data)
    if len(frames) > 1:
        damaged = [_open(_jpegify_frame(frame, quality)).convert("RGB") for frame in frames]
        return _save_gif(damaged, durations, loop)
    return _jpegify_frame(frames[0], quality)


def _sigmoid_table():
    def curve(u):
        return 1 / (1 + math.exp(_SIGMOID_CONTRAST * (_SIGMOID_MIDPOINT - u)))

    low, high = curve(0.0), curve(1.0)
    return [round(255 * (curve(v / 255) - low) / (high - low)) for v in range(256)]


def _posterize_table(levels):
    steps = levels - 1
    return [round(round(v / 255 * steps) * 255 / steps) for v in range(256)]


_SIGMOID_LUT = _sigmoid_table() * 3
_POSTERIZE_LUT = _posterize_table(_CORRU_LEVELS) * 3


def _palette(path):
    with Image.open(path) as source:
        rgb = source.convert("RGB")
    colors = rgb.getcolors(256)
    if colors is None:
        return rgb.quantize(256)
    flat = []
    for _, color in colors:
        flat.extend(color)
    flat.extend(colors[0][1] * (256 - len(colors)))
    palette = Image.new("P", (1, 1))
    palette.putpalette(flat)
    return palette


def _auto_gamma(image):
    bands = []
    for band, mean in zip(image.split(), ImageStat.Stat(image).mean):
        level = mean / 255
        if 0 < level < 1:
            exponent = math.log(0.5) / math.log(level)
            band = band.point([round(255 * (v / 255) ** exponent) for v in range(256)])
        bands.append(band)
    return Image.merge(image.mode, bands)


def _corruify(image, palette):
    image = image.convert("RGB").point(_SIGMOID_LUT).point(_POSTERIZE_LUT)
    width, height = image.size
    factor = max(min(width // 300, height // 300), 1)
    image = image.resize(
        (max(1, int(width / factor)), max(1, int(height / factor))),
        Image.Resampling.NEAREST,
    )
    return image.quantize(palette=palette, dither=Image.Dither.FLOYDSTEINBERG)


def corru(data, palette_path):
    """Shrink, posterize and remap an image onto the colours of a palette image."""
    palette = _palette(palette_path)
    frames, durations, loop = _load_frames(data)
    if len(frames) > 1:
        remapped = [_corruify(frame, palette).convert("RGB") for frame in frames]
        return _save_gif(remapped, durations, loop)
    image = _auto_gamma(frames[0].convert("RGB"))
    return _encode(_corruify(image, palette), "PNG")


def speech_bubble(data, mask_path):
    """Cut a speech bubble out of an image using a greyscale mask."""
    image = _open(data)
    image.seek(0)
    rgba = image.convert("RGBA")
    with Image.open(mask_path) as source:
        mask = source.convert("L").resize(rgba.size, Image.Resampling.BICUBIC)
    rgba.putalpha(ImageChops.darker(mask, rgba.getchannel("A")))
    return _encode(rgba, "PNG")


def _threshold(face):
    rgb = face.convert("RGB")
    red, green, blue = rgb.resize((1, 1), Image.Resampling.BOX).getpixel((0, 0))
    average = (max(red, green, blue) + min(red, green, blue)) / 2
    bw = rgb.point([255 if v > average else 0 for v in range(256)] * 3)
    return ImageEnhance.Brightness(bw).enhance(1.01).convert("RGBA")


def lament(avatar, gif_path):
    """Paste an avatar into the lament animation and return the GIF."""
    face = _open(avatar).convert("RGBA")
    frames, durations, loop = _load_frames(Path(gif_path).read_bytes())
    needed = max(entry[0] for entry in LAMENT_FRAMES) + 1
    if len(frames) < needed:
        raise ImageError(f"animation has {len(frames)} frames, needs {needed}")
    bw = _threshold(face)
    for index, scale, x, y in LAMENT_FRAMES:
        source = bw if 50 < index < 90 else face
        side = max(1, 128 * scale // 100)
        offset = scale * 64 // 100
        layer = Image.new("RGBA", frames[index].size, (0, 0, 0, 0))
        layer.paste(source.resize((side, side), Image.Resampling.LANCZOS), (x - offset, y - offset))
        frames[index] = Image.alpha_composite(frames[index], layer)
    return _save_gif(frames, durations, loop)


def tenor_content_url(html):
    """Extract the media address from a tenor page."""
    position = html.find("contentUrl")
    if position == -1:
        raise ImageError("no contentUrl in page")
    start = position + len('contentUrl":"')
    end = html.find('"', start)
    if end == -1:
        raise ImageError("unterminated contentUrl in page")
    return html[start:end].replace("\\u002F", "/")


def _has_image(message):
    return bool(message.attachments) and "image" in message.attachments[0].content_type


def _link_from(content, prefix):
    start = content.find(prefix)
    if start == -1:
        raise ImageError("no usable link in message")
    return content[start:].split(" ", 1)[0]


def find_image_targets(message):
    """Return the addresses of the images a command should work on."""
    target = message
    if not _has_image(message) and "https://" not in message.content:
        referenced = message.referenced
        if referenced is None or (
            not _has_image(referenced) and "https://" not in referenced.content
        ):
            raise ImageError("no image to work on")
        target = referenced
    if target.attachments:
        return [attachment.url for attachment in target.attachments]
    content = target.content
    if "discordapp" in content:
        raise ImageError("CDN links are not supported", reply=CDN_UNSUPPORTED)
    if "tenor.com" in content:
        return [_link_from(content, "https://tenor.com")]
    return [_link_from(content, "https://")]


def _download(url):
    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
    except requests.RequestException as exc:
        raise ImageError(f"could not fetch {url}: {exc}") from exc
    if response.status_code != 200:
        raise ImageError(f"could not fetch {url}: status {response.status_code}")
    return response.content


_PROCESSORS = {
    "yesod": functools.partial(jpegify, quality=1),
    "jpeg": functools.partial(jpegify, quality=4),
    "corru": functools.partial(corru, palette_path=PALETTE_FILE),
}


def apply_image_processing(inst, message):
    """Run the effect named by the command on every image of the message."""
    processor = _PROCESSORS.get(message.text_command())
    if processor is None:
        return
    try:
        targets = find_image_targets(message)
    except ImageError as exc:
        inst.session.send(message.channel_id, exc.reply, reply_to=message.id)
        return

    files = []
    for url in targets:
        if url.startswith("https://tenor.com"):
            try:
                url = tenor_content_url(_download(url).decode("utf-8", "replace"))
            except ImageError as exc:
                sadness(inst, message)
                inst.report(exc)
                return
        try:
            data = _download(url)
        except ImageError as exc:
            inst.report(exc)
            return
        try:
            out = processor(data)
        except ImageError as exc:
            sadness(inst, message)
            inst.report(exc)
            return
        except OSError as exc:
            inst.report(exc)
            return
        files.append(OutgoingFile(f"img.{_extension(out)}", out))

    inst.session.send(message.channel_id, files=files, reply_to=message.id)


def lament_mourn_and_despair(inst, message):
    """Put the target user's avatar into the lament animation."""
    target = message.author
    if message.referenced is not None:
        target = message.referenced.author
    if message.mentions:
        target = message.mentions[0]
    try:
        out = lament(inst.session.avatar(target), LAMENT_FILE)
    except (LookupError, OSError, ImageError):
        sadness(inst, message)
        return
    inst.session.send(
        message.channel_id, files=[OutgoingFile("img.gif", out)], reply_to=message.id
    )


def _bubble_source(message):
    if _has_image(message):
        return message.attachments[0].url
    referenced = message.referenced
    if referenced is None:
        return None
    if _has_image(referenced):
        return referenced.attachments[0].url
    if referenced.content.startswith("http"):
        return referenced.content
    return None


def speech_bubble_command(inst, message):
    """Turn the attached or referenced image into a speech bubble."""
    url = _bubble_source(message)
    if url is None:
        inst.session.send(message.channel_id, NOT_AN_IMAGE, reply_to=message.id)
        return
    try:
        out = speech_bubble(_download(url), MASK_FILE)
    except (ImageError, OSError):
        sadness(inst, message)
        return
    inst.session.send(
        message.channel_id, files=[OutgoingFile("img.png", out)], reply_to=message.id
    )