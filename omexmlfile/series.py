# series.py

"""Series of OME-XML files and index of their pixel data offsets."""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, final

import numpy

from .enums import COMPRESSION, PIXELTYPE
from .scanner import ByteScanner
from .utils import (
    MissingMetadataError,
    PixelDataNotFoundError,
    bytes2str,
    indent,
    logger,
    product,
)

if TYPE_CHECKING:
    from typing import Any, Literal

    from .fileio import FileHandle

__all__ = [
    'OmeXmlSeries',
    'SeriesIndexer',
]


@final
class OmeXmlSeries:
    """Series of image planes stored in OME-XML BinData elements.

    OmeXmlSeries instances are created by :py:class:`SeriesIndexer`.
    All attributes are read-only once indexing finished.

    """

    __slots__ = (
        'bigendianpos',
        'compression',
        'dimensionorder',
        'end',
        'imagecount',
        'imageoffset',
        'index',
        'littleendian',
        'name',
        'offsets',
        'pixeltype',
        'sizec',
        'sizet',
        'sizex',
        'sizey',
        'sizez',
    )

    index: int
    """Index of series in file."""

    name: str | None
    """Name of Image element."""

    littleendian: bool
    """Pixel data are stored in little-endian byte order."""

    bigendianpos: int
    """File offset of BigEndian attribute of series."""

    imageoffset: int | None
    """File offset of Image element preceding the series, if found."""

    offsets: tuple[int, ...]
    """Strictly increasing file offsets of BinData elements."""

    end: int
    """File offset where data of series end."""

    imagecount: int
    """Number of planes found in file. At most sizez * sizec * sizet."""

    sizex: int
    """Width of planes."""

    sizey: int
    """Height of planes."""

    sizez: int
    """Number of focal planes."""

    sizec: int
    """Number of channels."""

    sizet: int
    """Number of time points."""

    pixeltype: PIXELTYPE
    """Type of pixel values."""

    dimensionorder: str
    """Order of dimensions, for example, 'XYZCT'."""

    compression: str
    """Compression scheme of BinData, for example, 'zlib'."""

    def __init__(
        self,
        index: int,
        bigendianpos: int,
        *,
        littleendian: bool,
    ) -> None:
        self.index = index
        self.bigendianpos = bigendianpos
        self.littleendian = littleendian
        self.name = None
        self.imageoffset = None
        self.offsets = ()
        self.end = -1
        self.imagecount = 0
        self.sizex = 0
        self.sizey = 0
        self.sizez = 1
        self.sizec = 1
        self.sizet = 1
        self.pixeltype = PIXELTYPE.UINT8
        self.dimensionorder = 'XYZCT'
        self.compression = COMPRESSION.NONE.value

    @property
    def byteorder(self) -> Literal['>', '<']:
        """Byte order of pixel data."""
        return '<' if self.littleendian else '>'

    @property
    def bytesperpixel(self) -> int:
        """Number of bytes per pixel."""
        return self.pixeltype.bytesperpixel

    @property
    def planecount(self) -> int:
        """Number of planes according to metadata."""
        return product((self.sizez, self.sizec, self.sizet))

    @property
    def planesize(self) -> int:
        """Number of bytes in decoded plane."""
        return self.sizex * self.sizey * self.bytesperpixel

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of planes."""
        return (self.sizey, self.sizex)

    @property
    def dtype(self) -> numpy.dtype[Any]:
        """NumPy data type of pixels."""
        pixeltype = self.pixeltype
        return numpy.dtype(
            f'{self.byteorder}{pixeltype.kind}{pixeltype.bytesperpixel}'
        )

    def span(self, index: int, /) -> tuple[int, int]:
        """Return start and end file offsets of plane's BinData element.

        The span of the last plane found extends to the end of the series.

        """
        start = self.offsets[index]
        if index + 1 < len(self.offsets):
            end = self.offsets[index + 1]
        else:
            end = self.end
        return start, end

    def __repr__(self) -> str:
        return (
            f'<OmeXmlSeries {self.index} '
            f'{self.imagecount}x{self.sizey}x{self.sizex} '
            f'{self.dtype} {self.compression}>'
        )

    def __str__(self) -> str:
        return indent(
            repr(self),
            f'name: {self.name!r}',
            f'shape: {self.shape}',
            f'dtype: {self.dtype}',
            f'pixeltype: {self.pixeltype.name}',
            f'sizes (ZCT): {self.sizez}, {self.sizec}, {self.sizet}',
            f'dimensionorder: {self.dimensionorder}',
            f'imagecount: {self.imagecount}',
            f'compression: {self.compression}',
            f'offsets: {self.offsets[:4]}'
            + (' ...' if len(self.offsets) > 4 else ''),
        )


class SeriesIndexer:
    """Build index of pixel data offsets of series in OME-XML file.

    The file is scanned once for 'BigEndian' attributes, each of which
    starts a series. The first BinData element after each attribute
    marks the first plane of the series. Offsets of the remaining planes
    are found by skipping over about half the expected size of each
    plane and scanning for the next BinData elements. If this finds fewer
    planes than expected, the series is scanned again without skipping.

    Parameters:
        fh:
            File handle of OME-XML file.
        metadata:
            Accessor of OME-XML metadata, for example,
            :py:class:`OmeXmlMetadata`.
        windowsize:
            Size of scan windows.
            The default is :py:attr:`OMEXML.WINDOW_SIZE`.
        maxworkers:
            Maximum number of threads to scan series.
            Requires a file opened by name. The default is 1.

    """

    _fh: FileHandle
    _metadata: Any
    _windowsize: int | None
    _maxworkers: int

    def __init__(
        self,
        fh: FileHandle,
        metadata: Any,
        /,
        *,
        windowsize: int | None = None,
        maxworkers: int | None = None,
    ) -> None:
        self._fh = fh
        self._metadata = metadata
        self._windowsize = windowsize
        self._maxworkers = 1 if maxworkers is None else max(1, maxworkers)

    def build(self) -> list[OmeXmlSeries]:
        """Return series with plane offsets and metadata."""
        fh = self._fh
        logger().debug(f'{fh!r} determining endianness')
        series = self.find_series()
        logger().debug(f'{fh!r} finding image offsets of {len(series)} series')
        self.find_first_offsets(series)
        logger().debug(f'{fh!r} populating metadata')
        for s in series:
            self.bind_metadata(s)
        if self._maxworkers > 1 and len(series) > 1 and fh.is_file:
            with ThreadPoolExecutor(
                min(self._maxworkers, len(series))
            ) as executor:
                list(executor.map(self._find_offsets_cloned, series))
        else:
            for s in series:
                self.find_offsets(s)
        return series

    def scanner(self, fh: FileHandle, pattern: bytes, /) -> ByteScanner:
        """Return scanner for marker pattern."""
        from .omexmlfile import OMEXML

        exclude = OMEXML.BINDATA_EXCLUDE if pattern == OMEXML.BINDATA else ()
        return ByteScanner(
            fh, pattern, exclude=exclude, windowsize=self._windowsize
        )

    def find_series(self) -> list[OmeXmlSeries]:
        """Return one series per BigEndian attribute in file.

        Raises:
            PixelDataNotFoundError: File contains no BigEndian attribute.

        """
        from .omexmlfile import OMEXML

        fh = self._fh
        positions = list(self.scanner(fh, OMEXML.BIGENDIAN).finditer(0))
        if not positions:
            msg = f'{fh!r} pixel data not found: no BigEndian attribute'
            raise PixelDataNotFoundError(msg)
        series = []
        for index, position in enumerate(positions):
            fh.seek(position + len(OMEXML.BIGENDIAN))
            value = bytes2str(fh.read(OMEXML.VALUE_SIZE))
            value = value.lstrip(' \t\r\n=').lstrip('"\'')
            value = re.split('["\'\\s/>]', value, maxsplit=1)[0]
            series.append(
                OmeXmlSeries(
                    index,
                    position,
                    littleendian=not value.lower().startswith('t'),
                )
            )
        return series

    def find_first_offsets(self, series: list[OmeXmlSeries], /) -> None:
        """Set offsets of first BinData element and Image element of series.

        Raises:
            PixelDataNotFoundError:
                No BinData element after BigEndian attribute, or no Image
                element before series other than the first.

        """
        from .omexmlfile import OMEXML

        fh = self._fh
        bindata = self.scanner(fh, OMEXML.BINDATA)
        image = self.scanner(fh, OMEXML.IMAGE)
        start = 0
        for s in series:
            try:
                first = bindata.find(s.bigendianpos)
            except PixelDataNotFoundError as exc:
                msg = f'{fh!r} pixel data of series {s.index} not found'
                raise PixelDataNotFoundError(msg) from exc
            try:
                s.imageoffset = image.find(start, first)
            except PixelDataNotFoundError as exc:
                if s.index > 0:
                    msg = f'{fh!r} Image element of series {s.index} not found'
                    raise PixelDataNotFoundError(msg) from exc
            s.offsets = (first,)
            start = first
        for s, following in zip(series, series[1:]):
            s.end = following.offsets[0]
        series[-1].end = fh.size

    def bind_metadata(self, series: OmeXmlSeries, /) -> None:
        """Set dimensions, pixel type, and compression of series.

        Raises:
            MissingMetadataError:
                Metadata accessor does not return required value.

        """
        from .omexmlfile import OMEXML

        meta = self._metadata
        index = series.index
        values = {}
        for name, accessor in (
            ('SizeX', meta.size_x),
            ('SizeY', meta.size_y),
            ('SizeZ', meta.size_z),
            ('SizeC', meta.size_c),
            ('SizeT', meta.size_t),
            ('PixelType', meta.pixel_type),
            ('DimensionOrder', meta.dimension_order),
        ):
            value = accessor(index, 0)
            if value is None:
                msg = f'{self._fh!r} series {index} is missing Pixels {name}'
                raise MissingMetadataError(msg)
            values[name] = value

        series.sizex = int(values['SizeX'])
        series.sizey = int(values['SizeY'])
        series.sizez = int(values['SizeZ'])
        series.sizec = int(values['SizeC'])
        series.sizet = int(values['SizeT'])
        series.pixeltype = PIXELTYPE.from_string(str(values['PixelType']))
        series.dimensionorder = str(values['DimensionOrder'])
        names = getattr(meta, 'names', None)
        if names is not None and index < len(names):
            series.name = names[index]

        fh = self._fh
        fh.seek(series.offsets[0])
        probe = bytes2str(fh.read(OMEXML.PROBE_SIZE))
        match = re.search(r'Compression\s*=\s*"([^"]*)"', probe)
        series.compression = (
            match.group(1).lower() if match else COMPRESSION.NONE.value
        )

    def find_offsets(
        self, series: OmeXmlSeries, /, fh: FileHandle | None = None
    ) -> None:
        """Set offsets of all BinData elements of series.

        If skipping over half the expected plane size finds fewer planes
        than expected, the series is scanned again without skipping.
        If still fewer planes are found, the series is truncated.

        """
        if fh is None:
            fh = self._fh
        planes = series.planecount
        offsets = self.search_for_data(fh, series, series.planesize // 2)
        if len(offsets) < planes:
            logger().debug(
                f'{fh!r} series {series.index} found {len(offsets)} of '
                f'{planes} planes, scanning again'
            )
            offsets = self.search_for_data(fh, series, 0)
        if len(offsets) < planes:
            logger().warning(
                f'{fh!r} series {series.index} is missing '
                f'{planes - len(offsets)} of {planes} planes'
            )
        series.offsets = tuple(offsets)
        series.imagecount = min(len(offsets), planes)

    def search_for_data(
        self, fh: FileHandle, series: OmeXmlSeries, safe: int, /
    ) -> list[int]:
        """Return offsets of BinData elements of series.

        Parameters:
            fh:
                File handle to scan.
            series:
                Series with offset of first BinData element and end.
            safe:
                Number of bytes to skip before scanning for the next
                BinData elements. All BinData elements in the first
                window containing any are recorded.

        """
        from .omexmlfile import OMEXML

        scanner = self.scanner(fh, OMEXML.BINDATA)
        planes = series.planecount
        end = series.end
        offsets = [series.offsets[0]]
        position = offsets[0] + 1
        while position + safe < end and len(offsets) < planes:
            position += safe
            matches, position = scanner.findwindow(position, end)
            if not matches:
                break
            offsets.extend(matches)
        return offsets

    def _find_offsets_cloned(self, series: OmeXmlSeries, /) -> None:
        """Set offsets of series using private file handle."""
        with self._fh.clone() as fh:
            self.find_offsets(series, fh)
