"""Image utilities: hashing, decoding, content heuristics and encoding."""
import hashlib
from io import BytesIO
from typing import List, Optional, Tuple

from PIL import Image, ImageChops, ImageFilter, ImageStat

from optimizer.settings import settings


def compute_content_hash(data: bytes) -> str:
    """Compute SHA256 hash of media data (used to key output paths)."""
    return hashlib.sha256(data).hexdigest()


def open_image_from_bytes(data: bytes) -> Image.Image:
    """
    Open and fully decode a PIL Image from bytes.

    Args:
        data: Image bytes

    Returns:
        PIL Image object

    Raises:
        ValueError: If image cannot be decoded
    """
    if not data:
        raise ValueError("Invalid image data: empty input")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (OSError, SyntaxError, Image.DecompressionBombError) as e:
        raise ValueError(f"Invalid image data: {e}") from e
    return image


def to_rgb(image: Image.Image) -> Image.Image:
    """Convert to RGB, flattening any alpha channel onto white."""
    if image.mode == "RGB":
        return image
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return image.convert("RGB")


def make_thumbnail(image: Image.Image, size: Optional[int] = None) -> Image.Image:
    """Downscaled RGB copy for palette-level statistics."""
    if size is None:
        size = settings.ANALYSIS_THUMBNAIL_SIZE
    thumb = to_rgb(image).copy()
    thumb.thumbnail((size, size), Image.Resampling.LANCZOS)
    return thumb


def sample_tiles(
    image: Image.Image,
    tile_size: Optional[int] = None,
    grid: Optional[int] = None,
) -> List[Image.Image]:
    """
    Crop a grid of grayscale tiles at native resolution.

    Downscaling blurs fine detail such as text strokes, so local
    statistics are measured on crops of the original pixels.
    """
    if tile_size is None:
        tile_size = settings.ANALYSIS_TILE_SIZE
    if grid is None:
        grid = settings.ANALYSIS_TILE_GRID

    gray = image.convert("L")
    width, height = gray.size
    tile_w = min(tile_size, width)
    tile_h = min(tile_size, height)

    boxes = []
    for row in range(grid):
        for col in range(grid):
            x = (width - tile_w) * col // max(grid - 1, 1)
            y = (height - tile_h) * row // max(grid - 1, 1)
            box = (x, y, x + tile_w, y + tile_h)
            if box not in boxes:
                boxes.append(box)

    return [gray.crop(box) for box in boxes]


def edge_map(gray: Image.Image) -> Image.Image:
    """Symmetric Laplacian magnitude, with the unfiltered 1px border removed."""
    edges = ImageChops.lighter(
        gray.filter(ImageFilter.FIND_EDGES),
        ImageChops.invert(gray).filter(ImageFilter.FIND_EDGES),
    )
    width, height = edges.size
    if width > 2 and height > 2:
        edges = edges.crop((1, 1, width - 1, height - 1))
    return edges


def _fraction_at_least(gray: Image.Image, threshold: int) -> float:
    histogram = gray.histogram()
    total = sum(histogram)
    return sum(histogram[threshold:]) / total if total else 0.0


def edge_density(gray: Image.Image, threshold: Optional[int] = None) -> float:
    """Fraction of pixels whose edge response is at least ``threshold``."""
    if threshold is None:
        threshold = settings.EDGE_PIXEL_THRESHOLD
    return _fraction_at_least(edge_map(gray), threshold)


def luma_stddev(gray: Image.Image) -> float:
    return ImageStat.Stat(gray).stddev[0]


def extreme_fraction(gray: Image.Image) -> float:
    """Fraction of pixels that are near black or near white."""
    histogram = gray.histogram()
    total = sum(histogram)
    if not total:
        return 0.0
    return (sum(histogram[:64]) + sum(histogram[192:])) / total


def noise_residual(gray: Image.Image, threshold: Optional[int] = None) -> float:
    """
    Mean high-frequency residual (against a 3x3 median) on flat pixels.

    Edges are excluded so sharp detail is not mistaken for noise. When
    almost nothing is flat the whole tile is measured instead.
    """
    if threshold is None:
        threshold = settings.EDGE_PIXEL_THRESHOLD

    residual = ImageChops.difference(gray, gray.filter(ImageFilter.MedianFilter(3)))
    width, height = residual.size
    if width > 2 and height > 2:
        residual = residual.crop((1, 1, width - 1, height - 1))

    flat_mask = edge_map(gray).point(lambda v: 255 if v < threshold else 0)
    flat_pixels = flat_mask.histogram()[255]
    total = flat_mask.size[0] * flat_mask.size[1]

    if total == 0:
        return 0.0
    if flat_pixels < total * 0.01:
        return ImageStat.Stat(residual).mean[0]
    return ImageStat.Stat(residual, flat_mask).mean[0]


def is_monochrome(thumb: Image.Image, tolerance: int = 8) -> bool:
    """True when all channels agree within ``tolerance``."""
    if thumb.mode in ("1", "L", "LA", "I", "F"):
        return True
    red, green, blue = to_rgb(thumb).split()
    return (
        ImageChops.difference(red, green).getextrema()[1] <= tolerance
        and ImageChops.difference(green, blue).getextrema()[1] <= tolerance
    )


def palette_size(thumb: Image.Image, limit: int) -> Optional[int]:
    """Number of distinct colours, or None when there are more than ``limit``."""
    colors = to_rgb(thumb).getcolors(maxcolors=limit)
    return len(colors) if colors is not None else None


def skin_fraction(thumb: Image.Image) -> float:
    """Fraction of pixels inside the YCbCr skin-tone box."""
    _, cb, cr = to_rgb(thumb).convert("YCbCr").split()
    cb_mask = cb.point(lambda v: 255 if 77 <= v <= 127 else 0)
    cr_mask = cr.point(lambda v: 255 if 133 <= v <= 173 else 0)
    both = ImageChops.multiply(cb_mask, cr_mask)
    total = both.size[0] * both.size[1]
    return both.histogram()[255] / total if total else 0.0


def dominant_colors(thumb: Image.Image, count: Optional[int] = None) -> List[str]:
    """Most frequent colours after median-cut quantization, as hex strings."""
    if count is None:
        count = settings.MAX_DOMINANT_COLORS

    quantized = to_rgb(thumb).quantize(colors=count, method=Image.Quantize.MEDIANCUT)
    palette = quantized.getpalette() or []
    colors = []
    for _, index in sorted(quantized.getcolors() or [], reverse=True):
        r, g, b = palette[index * 3:index * 3 + 3]
        hex_color = f"#{r:02x}{g:02x}{b:02x}"
        if hex_color not in colors:
            colors.append(hex_color)
    return colors[:count]


def frame_difference(first: Image.Image, second: Image.Image, size: int = 128) -> float:
    """Mean absolute luminance difference between two frames."""
    a = first.convert("L").resize((size, size), Image.Resampling.BILINEAR)
    b = second.convert("L").resize((size, size), Image.Resampling.BILINEAR)
    return ImageStat.Stat(ImageChops.difference(a, b)).mean[0]


def encode_image(
    image: Image.Image,
    image_format: str,
    max_dimension: Optional[int],
    quality: int = 85,
    preserve_metadata: bool = False,
) -> Tuple[bytes, int, int]:
    """
    Encode an image variant.

    Args:
        image: PIL Image object
        image_format: Pillow format name ("WEBP", "JPEG", "PNG")
        max_dimension: Longest side after resize (None keeps the size)
        quality: Encoder quality (1-100)
        preserve_metadata: Carry EXIF and ICC profile over

    Returns:
        Tuple of (bytes, actual_width, actual_height)
    """
    image_format = image_format.upper()

    # Resize preserving aspect ratio; never upscale
    img_copy = image.copy()
    if max_dimension:
        img_copy.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    actual_width, actual_height = img_copy.size

    if image_format == "JPEG":
        img_copy = to_rgb(img_copy)
    elif img_copy.mode not in ("RGB", "RGBA", "L"):
        img_copy = img_copy.convert("RGBA" if "A" in img_copy.mode else "RGB")

    save_kwargs = {"quality": max(1, min(quality, 100)), "optimize": True}
    if image_format == "JPEG":
        save_kwargs["progressive"] = True
    elif image_format == "WEBP":
        save_kwargs["method"] = 4

    if preserve_metadata:
        for key in ("exif", "icc_profile"):
            if image.info.get(key):
                save_kwargs[key] = image.info[key]

    output = BytesIO()
    img_copy.save(output, format=image_format, **save_kwargs)

    return output.getvalue(), actual_width, actual_height
