# decoders.py

"""Decode planes from OME-XML BinData and extract regions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy

from .codecs import CompressionCodec, base64_decode
from .enums import COMPRESSION
from .utils import (
    BufferTooSmallError,
    DecompressionError,
    InvalidRegionError,
    SizeMismatchError,
)

if TYPE_CHECKING:
    from typing import Any

    from .fileio import FileHandle
    from .series import OmeXmlSeries

__all__ = [
    'check_region',
    'decode_plane',
    'extract_payload',
    'extract_region',
]

_CODECS = CompressionCodec()


def extract_payload(data: bytes, /) -> bytes:
    """Return text between end of first tag and start of next tag.

    >>> extract_payload(b'<BinData Compression="none">AQID</BinData><Bin')
    b'AQID'

    """
    start = data.find(b'>') + 1
    end = data.find(b'<', start)
    if end < 0:
        end = len(data)
    return data[start:end]


def decode_plane(fh: FileHandle, series: OmeXmlSeries, index: int, /) -> bytes:
    """Return decoded and decompressed bytes of plane.

    Parameters:
        fh:
            File handle of OME-XML file.
        series:
            Indexed series containing plane.
        index:
            Index of plane in series.

    Returns:
        Pixel data of plane in byte order of file.
        The size is ``sizex * sizey * bytesperpixel``.

    Raises:
        DecompressionError:
            Payload cannot be decoded or decompressed.
        SizeMismatchError:
            Decoded plane is smaller than expected or uncompressed
            payload size does not match plane size.

    """
    start, end = series.span(index)
    fh.seek(start)
    data = fh.read(end - start)
    payload = extract_payload(data)
    del data

    compression = series.compression
    expected = series.planesize
    try:
        pixels = base64_decode(payload)
    except ValueError as exc:
        msg = f'plane {index} of series {series.index}: {exc}'
        raise DecompressionError(msg) from exc
    del payload

    try:
        codec = _CODECS[compression]
    except KeyError as exc:
        msg = (
            f'plane {index} of series {series.index}: '
            f'cannot decompress {compression!r}, {exc.args[0]}'
        )
        raise DecompressionError(msg) from exc

    if compression == COMPRESSION.NONE:
        if len(pixels) != expected:
            msg = (
                f'plane {index} of series {series.index}: uncompressed '
                f'size {len(pixels)} does not match plane size {expected}'
            )
            raise SizeMismatchError(msg)
        return pixels

    try:
        decoded = codec(pixels)
    except Exception as exc:
        msg = (
            f'plane {index} of series {series.index}: '
            f'error decompressing {compression} data, {exc!r:.128}'
        )
        raise DecompressionError(msg) from exc
    if len(decoded) < expected:
        msg = (
            f'plane {index} of series {series.index}: decompressed '
            f'size {len(decoded)} is smaller than plane size {expected}'
        )
        raise SizeMismatchError(msg)
    return bytes(decoded[:expected])


def check_region(
    width: int, height: int, x: int, y: int, w: int, h: int, /
) -> None:
    """Raise InvalidRegionError if region is not contained in plane.

    >>> check_region(4, 4, 1, 2, 2, 2)

    """
    if (
        x < 0
        or y < 0
        or w < 0
        or h < 0
        or x + w > width
        or y + h > height
    ):
        msg = (
            f'region {x=}, {y=}, {w=}, {h=} is not contained '
            f'in plane of {width=}, {height=}'
        )
        raise InvalidRegionError(msg)


def extract_region(
    plane: bytes,
    width: int,
    height: int,
    bytesperpixel: int,
    x: int,
    y: int,
    w: int,
    h: int,
    /,
    out: Any = None,
) -> Any:
    """Return rectangular region of plane.

    Rows of the region are copied contiguously to the output buffer.

    Parameters:
        plane:
            Bytes of plane of `height` rows of `width` pixels.
        width, height:
            Size of plane in pixels.
        bytesperpixel:
            Number of bytes per pixel.
        x, y:
            Position of upper left corner of region.
        w, h:
            Size of region.
        out:
            Writable buffer to copy region into.
            By default, a new bytearray is returned.

    Raises:
        InvalidRegionError: Region is not contained in plane.
        BufferTooSmallError: Output buffer is too small for region.
        ValueError: Output buffer is not writable or not C-contiguous.

    Examples:
        >>> plane = bytes(range(16))
        >>> bytes(extract_region(plane, 4, 4, 1, 1, 2, 2, 2))
        b'\\t\\n\\r\\x0e'

    """
    check_region(width, height, x, y, w, h)
    rowsize = width * bytesperpixel
    if len(plane) < height * rowsize:
        msg = f'plane of {len(plane)} bytes is smaller than {height}x{rowsize}'
        raise SizeMismatchError(msg)

    size = w * h * bytesperpixel
    if out is None:
        out = bytearray(size)
    dst = memoryview(out)
    if dst.readonly or not dst.c_contiguous:
        msg = 'output buffer must be writable and C-contiguous'
        raise ValueError(msg)
    dst = dst.cast('B')
    if dst.nbytes < size:
        msg = f'buffer of {dst.nbytes} bytes is too small for {size} bytes'
        raise BufferTooSmallError(msg)
    if size == 0:
        return out

    src = numpy.frombuffer(plane, numpy.uint8, height * rowsize)
    src = src.reshape(height, rowsize)
    region = src[y : y + h, x * bytesperpixel : (x + w) * bytesperpixel]
    numpy.frombuffer(dst, numpy.uint8, size).reshape(region.shape)[:] = region
    return out
