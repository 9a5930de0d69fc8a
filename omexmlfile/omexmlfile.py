# omexmlfile.py

# Copyright (c) 2008-2026, Christoph Gohlke
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# 1. Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
# 2. Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
# 3. Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

r"""Read image data from OME-XML files.

Omexmlfile is a Python library to read image planes and metadata from
OME-XML files, in which the image data are stored as base64 encoded,
optionally zlib or bzip2 compressed, BinData elements of the XML document.

The positions of BinData elements are not recorded in OME-XML files.
Omexmlfile finds them by scanning the file with a small sliding window,
such that files of many gigabytes are never read into memory at once.

:Author: `Christoph Gohlke <https://www.cgohlke.com>`_
:License: BSD-3-Clause
:Version: 2026.10.18

Quickstart
----------

Install the omexmlfile package and all dependencies from the
`Python Package Index <https://pypi.org/project/omexmlfile/>`_::

    python -m pip install -U omexmlfile

Omexmlfile can be used as a console script to inspect OME-XML files::

    python -m omexmlfile --help

Requirements
------------

This revision was tested with the following requirements and dependencies
(other versions may work):

- `CPython <https://www.python.org>`_ 3.11.9, 3.12.10, 3.13.11, 3.14.2 64-bit
- `NumPy <https://pypi.org/project/numpy>`_ 2.4.1
- `Imagecodecs <https://pypi.org/project/imagecodecs/>`_ 2026.1.14
  (required for decoding zlib and bzip2 compressed BinData)

Revisions
---------

2026.10.18

- Initial release.

Notes
-----

`OME-XML <https://www.openmicroscopy.org/Schemas/>`_ is the XML format of
the Open Microscopy Environment. The pixel data of each image plane are
stored in a BinData element following the Pixels element of an Image::

    <Pixels DimensionOrder="XYZCT" PixelType="uint16" BigEndian="false"
     SizeX="512" SizeY="512" SizeZ="3" SizeC="1" SizeT="1">
      <Bin:BinData Compression="zlib">eJzt3...</Bin:BinData>
      ...

Each BigEndian attribute in the file starts a series. The first BinData
element after the attribute, which is not a reference to an external file
(Bin:External or Bin:BinaryFile), is the first plane of the series.
The remaining planes are found by skipping over about half the expected
size of the plane data and scanning for the next BinData elements.

The Compression attribute of the first BinData element of a series
applies to all planes of the series. Bzip2 compressed BinData contain two
bytes preceding the compressed stream, which are ignored.

Pixel types other than 8, 16, and 32-bit integers and 32-bit floats,
BinData elements split across several files, and writing OME-XML
files are not supported.

Examples
--------

Read the first plane of the first series from an OME-XML file:

>>> image = imread('temp.ome')  # doctest: +SKIP
>>> image.shape  # doctest: +SKIP
(256, 512)

Access series, metadata, and regions of planes:

>>> with OmeXmlFile('temp.ome') as omexml:  # doctest: +SKIP
...     series = omexml.series[0]
...     region = omexml.asarray(2, region=(16, 32, 64, 64))
...     buffer = omexml.openbytes(2, None, 16, 32, 64, 64)
...
>>> series.shape, series.dtype  # doctest: +SKIP
((256, 512), dtype('<u2'))

Inspect the OME-XML file from the command line::

    $ python -m omexmlfile temp.ome

"""

from __future__ import annotations

__version__ = '2026.10.18'

__all__ = [
    'COMPRESSION',
    'OMEXML',
    'PIXELTYPE',
    '_OMEXML',  # private
    'BufferTooSmallError',
    'ByteScanner',
    'CompressionCodec',
    'DecompressionError',
    'FileHandle',
    'InvalidPlaneIndexError',
    'InvalidRegionError',
    'MetadataStore',
    'MissingMetadataError',
    'MissingOmeSupportError',
    'NotOmeXmlError',
    'OmeSupport',
    'OmeXmlFile',
    'OmeXmlFileError',
    'OmeXmlMetadata',
    'OmeXmlSeries',
    'PixelDataNotFoundError',
    'SeriesIndexer',
    'SizeMismatchError',
    'Timer',
    '__version__',
    'decode_plane',
    'detect_ome_support',
    'extract_region',
    'imread',
    'logger',
]

import logging
import os
import sys
from functools import cached_property
from typing import IO, TYPE_CHECKING

import numpy

from .codecs import CompressionCodec
from .decoders import check_region, decode_plane, extract_region
from .enums import COMPRESSION, PIXELTYPE
from .fileio import FileHandle, Timer
from .metadata import (
    MetadataStore,
    OmeSupport,
    OmeXmlMetadata,
    detect_ome_support,
)
from .scanner import ByteScanner
from .series import OmeXmlSeries, SeriesIndexer
from .utils import (
    BufferTooSmallError,
    DecompressionError,
    InvalidPlaneIndexError,
    InvalidRegionError,
    MissingMetadataError,
    MissingOmeSupportError,
    NotOmeXmlError,
    OmeXmlFileError,
    PixelDataNotFoundError,
    SizeMismatchError,
    format_size,
    indent,
    logger,
    snipstr,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType
    from typing import Any, Self

    from numpy.typing import NDArray


def imread(
    file: str | os.PathLike[Any] | FileHandle | IO[bytes],
    /,
    *,
    key: int | None = 0,
    series: int = 0,
    region: Sequence[int] | None = None,
    out: NDArray[Any] | None = None,
    **kwargs: Any,
) -> NDArray[Any]:
    """Return image data from OME-XML file.

    Parameters:
        file:
            File name or seekable binary stream.
        key, series, region, out:
            Passed to :py:meth:`OmeXmlFile.asarray`.
        **kwargs:
            Additional arguments passed to :py:class:`OmeXmlFile`.

    """
    with OmeXmlFile(file, **kwargs) as omexml:
        return omexml.asarray(key, series=series, region=region, out=out)


class OmeXmlFile:
    """Read image and metadata from OME-XML file.

    The file is scanned for pixel data when opened. OmeXmlFile instances
    must be closed with :py:meth:`OmeXmlFile.close`, which is automatically
    called when using the 'with' context manager.

    OmeXmlFile instances are not thread-safe. All attributes are read-only.

    Parameters:
        file:
            Specifies OME-XML file to read.
            File objects must be open in binary mode.
        name:
            Name of file if `file` is file handle.
        offset:
            Start position of embedded file.
            The default is the current file position.
        size:
            Size of embedded file. The default is the number of bytes
            from the `offset` to the end of the file.
        omexml:
            OME-XML metadata overriding the metadata in file, for example,
            sanitized XML. Only the Image and Pixels elements are used.
        metadata:
            Metadata accessor to use instead of parsing OME-XML.
            Must implement the accessor methods of
            :py:class:`OmeXmlMetadata`.
        store:
            Metadata sink receiving series records.
            The default is a new :py:class:`MetadataStore`.
        support:
            Capabilities available for reading OME-XML files.
            The default is the result of :py:func:`detect_ome_support`.
        windowsize:
            Size of windows used to scan file for pixel data.
            The default is :py:attr:`OMEXML.WINDOW_SIZE`.
        maxworkers:
            Maximum number of threads to scan series for pixel data.
            If 0, up to :py:attr:`OMEXML.MAXWORKERS` threads are used.
            The default is 1.

    Raises:
        MissingOmeSupportError: Required capability is not available.
        NotOmeXmlError: File is not an OME-XML file.
        PixelDataNotFoundError: File does not contain pixel data.
        MissingMetadataError: Dimensions or pixel type of series missing.

    """

    series: list[OmeXmlSeries]
    """Series of image planes in file."""

    metadata: Any
    """Metadata accessor of OME-XML metadata."""

    store: Any
    """Metadata sink containing series records."""

    support: OmeSupport
    """Capabilities used to read file."""

    _fh: FileHandle

    def __init__(
        self,
        file: str | os.PathLike[Any] | FileHandle | IO[bytes],
        /,
        *,
        name: str | None = None,
        offset: int | None = None,
        size: int | None = None,
        omexml: str | None = None,
        metadata: Any = None,
        store: Any = None,
        support: OmeSupport | None = None,
        windowsize: int | None = None,
        maxworkers: int | None = None,
    ) -> None:
        if support is None:
            support = detect_ome_support()
        support.require()
        self.support = support

        if omexml is not None and omexml.strip()[-4:] != 'OME>':
            msg = 'invalid OME-XML'
            raise ValueError(msg)

        if maxworkers is None:
            maxworkers = 1
        elif maxworkers < 1:
            maxworkers = OMEXML.MAXWORKERS

        fh = FileHandle(file, name=name, offset=offset, size=size)
        self._fh = fh
        try:
            fh.seek(0)
            header = fh.read(OMEXML.HEADER_SIZE)
            if not OmeXmlFile.is_omexml(header):
                msg = f'not an OME-XML file: header={header[:32]!r}'
                raise NotOmeXmlError(msg)

            if metadata is None:
                if omexml is None:
                    metadata = OmeXmlMetadata.fromfile(fh)
                else:
                    metadata = OmeXmlMetadata.fromstring(omexml)
            self.metadata = metadata

            indexer = SeriesIndexer(
                fh, metadata, windowsize=windowsize, maxworkers=maxworkers
            )
            self.series = indexer.build()

            if store is None:
                store = MetadataStore()
            store.set_metadata(metadata)
            for series in self.series:
                store.add_series(series)
            self.store = store
        except Exception:
            fh.close()
            raise

    @staticmethod
    def is_omexml(header: bytes, /) -> bool:
        """Return if header block identifies OME-XML file.

        >>> OmeXmlFile.is_omexml(b'<?xml version="1.0"?><OME xmlns="">')
        True
        >>> OmeXmlFile.is_omexml(b'<?xml version="1.0"?><svg>')
        False

        """
        return header.startswith(b'<?xml') and b'<OME' in header

    @property
    def filehandle(self) -> FileHandle:
        """File handle."""
        return self._fh

    @property
    def filename(self) -> str:
        """Name of file handle."""
        return self._fh.name

    def close(self) -> None:
        """Close open file handle."""
        self._fh.close()

    def _getseries(self, series: int | OmeXmlSeries, /) -> OmeXmlSeries:
        """Return series by index."""
        if isinstance(series, OmeXmlSeries):
            return series
        try:
            return self.series[series]
        except IndexError as exc:
            msg = f'series {series} out of range [0, {len(self.series)})'
            raise IndexError(msg) from exc

    def openbytes(
        self,
        index: int,
        buffer: Any = None,
        /,
        x: int = 0,
        y: int = 0,
        w: int | None = None,
        h: int | None = None,
        *,
        series: int | OmeXmlSeries = 0,
    ) -> Any:
        """Return bytes of rectangular region of plane.

        Parameters:
            index:
                Index of plane in series.
            buffer:
                Writable buffer to copy region into. Must hold at least
                ``w * h * bytesperpixel`` bytes.
                By default, a new bytearray is returned.
            x, y:
                Position of upper left corner of region.
            w, h:
                Size of region. The default is the remaining width or
                height of the plane.
            series:
                Index of series containing plane.

        Returns:
            Buffer containing rows of region in byte order of file.

        Raises:
            InvalidPlaneIndexError: Plane index out of range.
            BufferTooSmallError: Buffer is too small for region.
            ValueError: Buffer is not writable or not C-contiguous.
            InvalidRegionError: Region not contained in plane.
            DecompressionError: Plane cannot be decoded.

        """
        s = self._getseries(series)
        if not 0 <= index < s.imagecount:
            msg = (
                f'plane index {index} out of range [0, {s.imagecount}) '
                f'of series {s.index}'
            )
            raise InvalidPlaneIndexError(msg)
        if w is None:
            w = s.sizex - x
        if h is None:
            h = s.sizey - y
        check_region(s.sizex, s.sizey, x, y, w, h)
        if buffer is not None:
            size = w * h * s.bytesperpixel
            view = memoryview(buffer)
            if view.readonly or not view.c_contiguous:
                msg = (
                    f'buffer of plane {index} must be writable and '
                    'C-contiguous'
                )
                raise ValueError(msg)
            nbytes = view.nbytes
            if nbytes < size:
                msg = (
                    f'buffer of {nbytes} bytes is too small for {size} bytes '
                    f'of plane {index} region {x=}, {y=}, {w=}, {h=}'
                )
                raise BufferTooSmallError(msg)
        plane = decode_plane(self._fh, s, index)
        return extract_region(
            plane, s.sizex, s.sizey, s.bytesperpixel, x, y, w, h, out=buffer
        )

    def asarray(
        self,
        key: int | None = 0,
        *,
        series: int | OmeXmlSeries = 0,
        region: Sequence[int] | None = None,
        out: NDArray[Any] | None = None,
    ) -> NDArray[Any]:
        """Return image data of plane(s) as NumPy array.

        Parameters:
            key:
                Index of plane in series.
                If None, return all planes of series.
            series:
                Index of series containing plane(s).
            region:
                Position and size of region of plane(s) to return,
                ``(x, y, w, h)``. The default is the whole plane.
            out:
                Contiguous array of shape ``(h, w)``, or
                ``(imagecount, h, w)`` if `key` is None, and dtype of
                series to copy image data into.

        Returns:
            Image data in dtype and byte order of series.

        """
        s = self._getseries(series)
        if region is None:
            x, y, w, h = 0, 0, s.sizex, s.sizey
        else:
            x, y, w, h = (int(i) for i in region)
        if key is None:
            keys = list(range(s.imagecount))
            shape: tuple[int, ...] = (len(keys), h, w)
        else:
            keys = [key]
            shape = (h, w)
        if out is None:
            out = numpy.empty(shape, s.dtype)
        elif out.shape != shape or out.dtype != s.dtype:
            msg = f'out={out.shape} {out.dtype} != {shape} {s.dtype}'
            raise ValueError(msg)
        if key is None:
            for i in keys:
                self.openbytes(i, out[i], x, y, w, h, series=s)
        else:
            self.openbytes(key, out, x, y, w, h, series=s)
        return out

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'<omexmlfile.OmeXmlFile {snipstr(self._fh.name, 32)!r}>'

    def __str__(self) -> str:
        return self._str()

    def _str(self, detail: int = 0, width: int = 79) -> str:
        """Return string containing information about OmeXmlFile.

        The `detail` parameter specifies the level of detail returned:

        0: file only.
        1: all series.
        2: metadata accessor.

        """
        info_list = [
            f'OmeXmlFile {snipstr(self._fh.name, max(12, width - 40))!r}',
            format_size(self._fh.size),
        ]
        if len(self.series) > 1:
            info_list.append(f'{len(self.series)} Series')
        info = '  '.join(info_list)
        if detail <= 0:
            return info
        info_list = [info]
        info_list.extend(str(s) for s in self.series)
        if detail >= 2:
            info_list.append(indent('METADATA', str(self.metadata)))
        return '\n\n'.join(info_list)


class _OMEXML:
    """Delay-loaded constants, accessible via :py:attr:`OMEXML` instance."""

    @cached_property
    def WINDOW_SIZE(self) -> int:
        """Default size of scan windows in bytes.

        The value of the ``OMEXMLFILE_WINDOW_SIZE`` environment variable if
        set, else 8192.

        """
        if 'OMEXMLFILE_WINDOW_SIZE' in os.environ:
            return max(64, int(os.environ['OMEXMLFILE_WINDOW_SIZE']))
        return 8192

    @cached_property
    def MAXWORKERS(self) -> int:
        """Default maximum number of threads for scanning series.

        The value of the ``OMEXMLFILE_NUM_THREADS`` environment variable if
        set, else half the CPU cores up to 32.

        """
        if 'OMEXMLFILE_NUM_THREADS' in os.environ:
            return max(1, int(os.environ['OMEXMLFILE_NUM_THREADS']))
        cpu_count: int | None
        try:
            cpu_count = len(
                os.sched_getaffinity(0)  # type: ignore[attr-defined]
            )
        except AttributeError:
            cpu_count = os.cpu_count()
        if cpu_count is None:
            return 1
        return min(32, max(1, cpu_count // 2))

    @cached_property
    def BINDATA_EXCLUDE(self) -> tuple[bytes, ...]:
        """Prefixes of BinData markers referencing external pixel data."""
        return (b'<Bin:External', b'<Bin:BinaryFile')

    BIGENDIAN: bytes = b'BigEndian'
    """Attribute starting series."""

    IMAGE: bytes = b'<Image '
    """Start of Image element."""

    BINDATA: bytes = b'<Bin'
    """Start of BinData element."""

    HEADER_SIZE: int = 2048
    """Number of bytes probed to identify OME-XML files."""

    PROBE_SIZE: int = 256
    """Number of bytes searched for Compression attribute."""

    VALUE_SIZE: int = 64
    """Number of bytes read to parse BigEndian attribute value."""


OMEXML = _OMEXML()


def main(argv: list[str] | None = None) -> int:
    """Omexmlfile command line usage main function.

    ``python -m omexmlfile [options] path``

    """
    import argparse

    logger().setLevel(logging.INFO)

    parser = argparse.ArgumentParser(
        prog='omexmlfile',
        description='Display image and metadata in OME-XML file.',
    )
    parser.add_argument('path', help='OME-XML file')
    parser.add_argument(
        '--version', action='version', version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '-s', '--series', type=int, default=0, help='series to decode'
    )
    parser.add_argument(
        '-p', '--plane', type=int, default=0, help='plane to decode'
    )
    parser.add_argument(
        '-r',
        '--region',
        default=None,
        metavar='X,Y,W,H',
        help='region of plane to decode',
    )
    parser.add_argument(
        '--nodata', action='store_true', help='do not decode image data'
    )
    parser.add_argument(
        '--windowsize', type=int, default=None, help='size of scan windows'
    )
    parser.add_argument(
        '--maxworkers',
        type=int,
        default=None,
        help='maximum number of threads scanning series',
    )
    parser.add_argument(
        '--debug', action='store_true', help='raise exception on failures'
    )
    parser.add_argument('-v', '--detail', type=int, default=2)
    parser.add_argument('-q', '--quiet', action='store_true')

    settings = parser.parse_args(argv)

    region = None
    if settings.region:
        try:
            region = tuple(int(i) for i in settings.region.split(','))
        except ValueError:
            region = ()
        if len(region) != 4:
            parser.error(f'invalid region {settings.region!r}')

    if not settings.quiet:
        print('\nReading OME-XML file:', end=' ', flush=True)
    timer = Timer()
    try:
        omexml = OmeXmlFile(
            settings.path,
            windowsize=settings.windowsize,
            maxworkers=settings.maxworkers,
        )
    except Exception as exc:
        if settings.debug:
            raise
        print(f'\n\n{exc.__class__.__name__}: {exc}')
        return 1

    with omexml:
        if not settings.quiet:
            print(timer)
        print()
        print(omexml._str(detail=settings.detail))
        print()

        if settings.nodata:
            return 0

        if not settings.quiet:
            print('Decoding image data:', end=' ', flush=True)
        timer.start()
        try:
            data = omexml.asarray(
                settings.plane, series=settings.series, region=region
            )
        except Exception as exc:
            if settings.debug:
                raise
            print(f'\n\n{exc.__class__.__name__}: {exc}')
            return 1
        if not settings.quiet:
            print(timer)

        info = [
            f'Plane {settings.plane} of series {settings.series}',
            f'shape: {data.shape}',
            f'dtype: {data.dtype}',
        ]
        if data.size:
            info.extend((f'min: {data.min()}', f'max: {data.max()}'))
        print(indent(*info))
    return 0


if __name__ == '__main__':
    sys.exit(main())
