# utils.py

"""Exceptions and utility functions for omexmlfile."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any


class OmeXmlFileError(ValueError):
    """Exception to indicate invalid OME-XML file or failed read."""


class NotOmeXmlError(OmeXmlFileError):
    """File header does not identify an OME-XML file."""


class MissingOmeSupportError(OmeXmlFileError):
    """Capability required to read OME-XML files is not available."""


class PixelDataNotFoundError(OmeXmlFileError):
    """Marker of pixel data could not be found before end of file."""


class MissingMetadataError(OmeXmlFileError):
    """Required dimension or pixel type is missing from OME-XML metadata."""


class DecompressionError(OmeXmlFileError):
    """Pixel data cannot be decoded or decompressed."""


class SizeMismatchError(DecompressionError):
    """Decoded plane does not match the expected plane size."""


class InvalidPlaneIndexError(OmeXmlFileError, IndexError):
    """Plane index is out of range."""


class BufferTooSmallError(OmeXmlFileError):
    """Output buffer is too small for requested region."""


class InvalidRegionError(OmeXmlFileError):
    """Requested region is not contained in plane."""


def logger() -> logging.Logger:
    """Return logger for omexmlfile module."""
    return logging.getLogger('omexmlfile')


def product(iterable: Iterable[int], /) -> int:
    """Return product of integers.

    Equivalent of ``math.prod(iterable)``, but multiplying NumPy integers
    does not overflow.

    >>> product([2**8, 2**30])
    274877906944
    >>> product([])
    1

    """
    prod = 1
    for i in iterable:
        prod *= int(i)
    return prod


def format_size(size: float, /, threshold: float = 1536) -> str:
    """Return file size as string from byte size.

    >>> format_size(1234)
    '1234 B'
    >>> format_size(12345678901)
    '11.50 GiB'

    """
    if size < threshold:
        return f'{size} B'
    for unit in ('KiB', 'MiB', 'GiB', 'TiB', 'PiB'):
        size /= 1024.0
        if size < threshold:
            return f'{size:.2f} {unit}'
    return 'ginormous'


def indent(*args: Any) -> str:
    """Return joined string representations of objects with indented lines.

    >>> print(indent('Title:', 'Text'))
    Title:
      Text

    """
    text = '\n'.join(str(arg) for arg in args)
    return '\n'.join(
        ('  ' + line if line else line) for line in text.splitlines() if line
    )[2:]


def snipstr(
    string: str,
    /,
    width: int = 79,
    *,
    ellipsis: str | None = None,
) -> str:
    """Return string cut to specified length.

    Long strings are split in the middle.

    Parameters:
        string:
            String to snip.
        width:
            Maximum length of returned string.
        ellipsis:
            Characters to insert between splits of long strings.
            The default is '…'.

    Examples:
        >>> snipstr('abcdefghijklmnop', 8, ellipsis='...')
        'abc...op'

    """
    if ellipsis is None:
        ellipsis = '…'
    esize = len(ellipsis)
    length = len(string)
    if length <= width:
        return string
    if esize == 0 or width < esize + 4:
        return string[:width]
    splitlen = length - width + esize
    end1 = math.floor(length * 0.5) - splitlen // 2
    end2 = end1 + splitlen
    return string[:end1] + ellipsis + string[end2:]


def bytes2str(b: bytes, /) -> str:
    """Return Unicode string from Latin-1 encoded bytes.

    Pixel data markers are ASCII, so every byte maps to one character and
    indices into the string equal indices into the bytes.

    >>> bytes2str(b'<Bin')
    '<Bin'

    """
    return b.decode('latin-1')
