# codecs.py

"""Base64 and compression codecs of OME-XML BinData."""

from __future__ import annotations

import binascii
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, final

import imagecodecs

from .enums import COMPRESSION

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

__all__ = [
    'CompressionCodec',
    'base64_decode',
    'bzip2_decode',
]


def _identityfunc(arg: Any, /, *args: Any, **kwargs: Any) -> Any:
    """Single argument identity function."""
    return arg


def base64_decode(data: bytes, /) -> bytes:
    """Return bytes decoded from base64 text.

    Characters outside of the base64 alphabet, such as line breaks and
    indentation of XML element text, are ignored.

    >>> base64_decode(b'AQID\\n  BA==')
    b'\\x01\\x02\\x03\\x04'

    """
    try:
        return binascii.a2b_base64(data)
    except binascii.Error as exc:
        msg = f'invalid base64 data: {exc}'
        raise ValueError(msg) from exc


def bzip2_decode(data: bytes, /, out: int | None = None) -> bytes:
    """Return decoded bzip2 stream of OME-XML BinData.

    The first two bytes of bzip2 compressed BinData are not part of the
    stream. They are replaced by the standard 'BZ' signature before
    decoding.

    """
    return imagecodecs.bz2_decode(b'BZ' + bytes(data[2:]), out=out)


@final
class CompressionCodec(Mapping[str, Callable[..., object]]):
    """Map :py:class:`COMPRESSION` value to decode function.

    Decode functions take the base64 decoded payload and return the
    decompressed bytes.

    >>> codecs = CompressionCodec()
    >>> codecs['none'](b'abc')
    b'abc'
    >>> 'lzw' in codecs
    False

    """

    _codecs: dict[str, Callable[..., Any]]

    def __init__(self) -> None:
        self._codecs = {COMPRESSION.NONE: _identityfunc}

    def __getitem__(self, key: str, /) -> Callable[..., Any]:
        if key in self._codecs:
            return self._codecs[key]
        codec: Callable[..., Any]
        try:
            match COMPRESSION(key):
                case COMPRESSION.ZLIB:
                    if not imagecodecs.ZLIB.available:
                        raise ImportError
                    codec = imagecodecs.zlib_decode
                case COMPRESSION.BZIP2:
                    if not imagecodecs.BZ2.available:
                        raise ImportError
                    codec = bzip2_decode
                case COMPRESSION.NONE:
                    codec = _identityfunc
        except ValueError as exc:
            msg = f'{key!r} is not a known COMPRESSION'
            raise KeyError(msg) from exc
        except (AttributeError, ImportError) as exc:
            msg = f"{key!r} requires the 'imagecodecs' package"
            raise KeyError(msg) from exc
        self._codecs[key] = codec
        return codec

    def __contains__(self, key: Any, /) -> bool:
        try:
            self[key]
        except KeyError:
            return False
        return True

    def __iter__(self) -> Iterator[str]:
        yield from (c.value for c in COMPRESSION if c in self)

    def __len__(self) -> int:
        return sum(1 for _ in self)
