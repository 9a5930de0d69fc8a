# enums.py

"""OME-XML enumeration types."""

from __future__ import annotations

import enum

__all__ = [
    'COMPRESSION',
    'PIXELTYPE',
]


class PIXELTYPE(enum.IntEnum):
    """Pixel types of image planes.

    Values are the pixel type codes conventionally used by OME readers.

    """

    INT8 = 0
    """8-bit signed integer."""
    UINT8 = 1
    """8-bit unsigned integer."""
    INT16 = 2
    """16-bit signed integer."""
    UINT16 = 3
    """16-bit unsigned integer."""
    INT32 = 4
    """32-bit signed integer."""
    UINT32 = 5
    """32-bit unsigned integer."""
    FLOAT = 6
    """Single precision (4-byte) IEEE format."""

    @classmethod
    def from_string(cls, pixeltype: str, /) -> PIXELTYPE:
        """Return PIXELTYPE from value of Pixels PixelType attribute.

        Integer types are signed unless the name starts with 'u'.
        Names ending in '16' or '32' map to 2 or 4-byte integers,
        'float' to FLOAT, any other name to 1-byte integers.

        >>> PIXELTYPE.from_string('Uint16')
        <PIXELTYPE.UINT16: 3>
        >>> PIXELTYPE.from_string('bit')
        <PIXELTYPE.INT8: 0>

        """
        name = pixeltype.lower()
        signed = name[:1] != 'u'
        if name.endswith('16'):
            return cls.INT16 if signed else cls.UINT16
        if name.endswith('32'):
            return cls.INT32 if signed else cls.UINT32
        if name == 'float':
            return cls.FLOAT
        return cls.INT8 if signed else cls.UINT8

    @property
    def bytesperpixel(self) -> int:
        """Number of bytes per pixel."""
        return {0: 1, 1: 1, 2: 2, 3: 2, 4: 4, 5: 4, 6: 4}[self.value]

    @property
    def kind(self) -> str:
        """NumPy character code of type kind."""
        if self == PIXELTYPE.FLOAT:
            return 'f'
        return 'i' if self.value % 2 == 0 else 'u'


class COMPRESSION(enum.StrEnum):
    """Values of BinData Compression attribute."""

    NONE = 'none'
    """No compression (default)."""
    ZLIB = 'zlib'
    """Zlib (Deflate) stream."""
    BZIP2 = 'bzip2'
    """Bzip2 stream with 2-byte prefix."""
