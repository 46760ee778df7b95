"""Image I/O and texture rescaling -- numpy arrays with explicit bit-depth handling."""

import logging
import os
import shutil
import threading
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import Iterable, Iterator, Tuple

import cv2
import numpy as np
import yaml
from PIL import Image
from scipy import ndimage

from .errors import DecodeError

# Pillow's global decompression bomb check is replaced by the explicit
# max_pixels guard in load_image().
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("repro_pipeline.io")

DIRECT_TEXTURE_EXTENSIONS = (".png", ".jpg")
IMPORT_TEXTURE_EXTENSIONS = (
    ".psd", ".tif", ".tiff", ".tga", ".gif", ".bmp", ".iff", ".pict",
)

_SIXTEEN_BIT_MODES = ("I;16", "I;16B", "I;16L", "I;16N")
_IMPORT_SETTINGS_SUFFIX = ".meta"
_INTERMEDIATE_SUFFIX = ".import.png"


def is_texture(path: str, extensions: Iterable[str]) -> bool:
    return Path(path).suffix.lower() in tuple(extensions)


def load_image_with_depth(path: str, max_pixels: int = 0) -> Tuple[np.ndarray, int]:
    """Load an image as a float32 array in [0, 1] plus its source bit depth.

    Palette and luminance-alpha images are expanded to RGBA, grayscale and
    CMYK to RGB; 16-bit grayscale stays single precision at 16 bits.
    """
    ext = Path(path).suffix.lower()
    try:
        with Image.open(path) as img:
            # Memory guard
            if max_pixels > 0 and img.width * img.height > max_pixels:
                raise ValueError(
                    f"Image too large: {img.width}x{img.height} = "
                    f"{img.width * img.height:,} pixels (max {max_pixels:,})."
                )

            if img.mode in _SIXTEEN_BIT_MODES:
                logger.debug("Loading %s as 16-bit integer mode %s", path, img.mode)
                return np.asarray(img, dtype=np.float32) / 65535.0, 16

            if img.mode == "I":
                bits = img.info.get("bits")
                if not isinstance(bits, int) or bits <= 0:
                    bits = 16 if ext in (".png", ".tif", ".tiff") else 32
                max_value = float((1 << min(bits, 32)) - 1)
                arr = np.clip(np.asarray(img, dtype=np.float32) / max_value, 0.0, 1.0)
                return arr, 16

            if img.mode == "F":
                arr = np.asarray(img, dtype=np.float32)
                amin, amax = float(arr.min()), float(arr.max())
                if amin < 0.0 or amax > 1.0:
                    logger.warning(
                        "Float image '%s' has range [%.6f, %.6f]; clamping to [0, 1].",
                        path, amin, amax,
                    )
                return np.clip(arr, 0.0, 1.0), 16

            if img.mode in ("P", "PA", "LA"):
                with img.convert("RGBA") as converted:
                    arr = np.asarray(converted, dtype=np.float32) / 255.0
            elif img.mode in ("L", "1", "CMYK", "YCbCr"):
                with img.convert("RGB") as converted:
                    arr = np.asarray(converted, dtype=np.float32) / 255.0
            else:
                logger.debug("Loading image '%s' as mode %s", path, img.mode)
                arr = np.asarray(img, dtype=np.float32) / 255.0
            return arr, 8
    except ValueError:
        raise
    except Exception as e:
        logger.error("Failed to open image '%s' (ext=%s): %s", path, ext, e)
        raise IOError(f"Failed to open image: {path} ({ext}): {e}") from e


def load_image(path: str, max_pixels: int = 0) -> np.ndarray:
    """Load image as float32 numpy array normalized to [0, 1]."""
    return load_image_with_depth(path, max_pixels)[0]


def _encode_png(arr: np.ndarray, bits: int) -> bytes:
    if bits == 16:
        arr_16 = np.round(arr * 65535.0).astype(np.uint16)
        if arr_16.ndim == 3 and arr_16.shape[-1] == 1:
            arr_16 = arr_16[:, :, 0]
        if arr_16.ndim == 2:
            png_data = arr_16
        elif arr_16.shape[-1] == 4:
            png_data = arr_16[:, :, [2, 1, 0, 3]]  # RGBA -> BGRA
        elif arr_16.shape[-1] >= 3:
            png_data = arr_16[:, :, :3][:, :, ::-1]  # RGB -> BGR
        else:
            raise ValueError(f"Unsupported shape for 16-bit PNG save: {arr_16.shape}")
        ok, buf = cv2.imencode(".png", np.ascontiguousarray(png_data))
        if not ok:
            raise IOError("cv2.imencode failed for 16-bit PNG")
        return buf.tobytes()

    arr_8 = np.round(arr * 255.0).astype(np.uint8)
    if arr_8.ndim == 3 and arr_8.shape[-1] == 1:
        arr_8 = arr_8[:, :, 0]
    with Image.fromarray(arr_8) as img:
        out = BytesIO()
        img.save(out, format="PNG", optimize=True)
        return out.getvalue()


def save_png(arr: np.ndarray, path: str, bits: int = 8):
    """Save a float32 [0, 1] array as PNG bytes at ``path``.

    The file is always PNG-encoded whatever the extension of ``path``.
    Written through a temp file and ``os.replace`` so a failure never
    leaves a truncated output.
    """
    if arr.size == 0 or arr.ndim < 2:
        raise ValueError(
            f"Cannot save empty or degenerate array (shape={arr.shape}) to {path}"
        )
    if bits not in (8, 16):
        raise ValueError(f"bits must be 8 or 16, got {bits}")

    data = _encode_png(np.clip(arr, 0.0, 1.0), bits)
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}"
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
        logger.debug("Saved: %s (%s, %dbit)", path, arr.shape, bits)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


def _read_import_settings(settings_path: str) -> dict:
    with open(settings_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data.get("TextureImporter") or {}


def _write_import_settings(settings_path: str, importer: dict):
    with open(settings_path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"TextureImporter": importer}, f, sort_keys=False)


def _import_pass(staged: str, settings_path: str, intermediate: str, max_pixels: int):
    """Run one import of ``staged``.

    Creates default importer settings when none exist yet. When the settings
    are readable and uncompressed, the decoded pixels are materialized as an
    uncompressed intermediate PNG.
    """
    if not os.path.exists(settings_path):
        with Image.open(staged) as img:
            importer = {
                "sourceFormat": img.format,
                "sourceMode": img.mode,
                "width": img.width,
                "height": img.height,
                "isReadable": 0,
                "textureCompression": 1,
            }
        _write_import_settings(settings_path, importer)
        logger.debug("Created import settings for %s", staged)
        return

    importer = _read_import_settings(settings_path)
    if importer.get("isReadable") == 1 and importer.get("textureCompression") == 0:
        pixels, bits = load_image_with_depth(staged, max_pixels)
        save_png(pixels, intermediate, bits=bits)
        del pixels


@contextmanager
def staged_import(
    source: str, scratch_dir: str, max_pixels: int = 0
) -> Iterator[Tuple[np.ndarray, int]]:
    """Decode an import-only texture through a scratch import round trip.

    The source is copied into ``scratch_dir`` and imported twice: once to
    create its importer settings, then again after forcing them readable and
    uncompressed. Yields ``(pixels, bits)``. Every scratch file is removed
    on exit, including error paths.
    """
    os.makedirs(scratch_dir, exist_ok=True)
    staged = os.path.join(scratch_dir, os.path.basename(source))
    settings_path = staged + _IMPORT_SETTINGS_SUFFIX
    intermediate = staged + _INTERMEDIATE_SUFFIX
    try:
        shutil.copyfile(source, staged)
        _import_pass(staged, settings_path, intermediate, max_pixels)

        importer = _read_import_settings(settings_path)
        importer["isReadable"] = 1
        importer["textureCompression"] = 0
        _write_import_settings(settings_path, importer)
        _import_pass(staged, settings_path, intermediate, max_pixels)

        if not os.path.isfile(intermediate):
            raise IOError(f"Import produced no readable texture for {source}")
        yield load_image_with_depth(intermediate, max_pixels)
    finally:
        for scratch in (staged, settings_path, intermediate):
            if os.path.exists(scratch):
                try:
                    os.remove(scratch)
                except OSError as exc:
                    logger.warning("Failed to remove scratch file %s: %s", scratch, exc)


def _sample_positions(dst: int, src: int) -> np.ndarray:
    # Corner-aligned: first and last destination pixels hit the source edges.
    if dst == 1:
        return np.zeros(1, dtype=np.float32)
    return np.arange(dst, dtype=np.float32) * ((src - 1) / (dst - 1))


def rescale_array(arr: np.ndarray, scale: int) -> np.ndarray:
    """Bilinearly downsample ``arr`` by an integer factor.

    New size is ``floor(size / scale)`` per axis, at least 1. Destination
    pixel ``x`` samples source coordinate ``x / (new - 1) * (old - 1)``;
    a 1-pixel axis samples coordinate 0. ``scale == 1`` returns the input.
    """
    scale = int(scale)
    if scale < 1:
        raise ValueError(f"scale must be >= 1, got {scale}")
    if scale == 1:
        return arr

    h, w = arr.shape[:2]
    new_h, new_w = max(h // scale, 1), max(w // scale, 1)
    grid_y, grid_x = np.meshgrid(
        _sample_positions(new_h, h), _sample_positions(new_w, w), indexing="ij"
    )
    coords = np.stack([grid_y, grid_x])

    if arr.ndim == 2:
        return ndimage.map_coordinates(arr, coords, order=1, mode="nearest")

    out = np.empty((new_h, new_w, arr.shape[2]), dtype=arr.dtype)
    for ch in range(arr.shape[2]):
        out[:, :, ch] = ndimage.map_coordinates(
            arr[:, :, ch], coords, order=1, mode="nearest"
        )
    return out


def rescale_texture(
    source: str,
    destination: str,
    scale: int,
    scratch_dir: str,
    import_extensions: Iterable[str] = IMPORT_TEXTURE_EXTENSIONS,
    max_pixels: int = 0,
) -> Tuple[int, int]:
    """Decode ``source``, downsample by ``scale`` and write PNG bytes to ``destination``.

    Returns the written ``(width, height)``. Decode failures raise
    DecodeError and leave no file at ``destination``.
    """
    try:
        if is_texture(source, import_extensions):
            with staged_import(source, scratch_dir, max_pixels) as (pixels, bits):
                resized = rescale_array(pixels, scale)
                del pixels
        else:
            pixels, bits = load_image_with_depth(source, max_pixels)
            resized = rescale_array(pixels, scale)
            del pixels
    except (OSError, ValueError) as exc:
        raise DecodeError(source, str(exc)) from exc

    try:
        save_png(resized, destination, bits=bits)
        height, width = resized.shape[:2]
    finally:
        del resized
    logger.debug("Rescaled %s -> %s (%dx%d)", source, destination, width, height)
    return width, height
