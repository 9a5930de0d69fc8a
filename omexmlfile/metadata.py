# metadata.py

"""OME-XML metadata accessor, metadata sink, and capability detection."""

from __future__ import annotations

import io
from typing import IO, TYPE_CHECKING, final

from .utils import MissingOmeSupportError, indent, logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence
    from typing import Any

    from .fileio import FileHandle
    from .series import OmeXmlSeries

__all__ = [
    'MetadataStore',
    'OmeSupport',
    'OmeXmlMetadata',
    'detect_ome_support',
]


@final
class OmeSupport:
    """Capabilities available for reading OME-XML files.

    Returned by :py:func:`detect_ome_support` and passed to
    :py:class:`OmeXmlFile`.

    Parameters:
        xml:
            XML parser is available to read metadata.
        codecs:
            Names of compression schemes that can be decoded.
        message:
            Reason why capabilities are missing.

    """

    __slots__ = ('codecs', 'message', 'xml')

    xml: bool
    """XML parser is available to read metadata."""

    codecs: frozenset[str]
    """Names of compression schemes that can be decoded."""

    message: str
    """Reason why capabilities are missing."""

    def __init__(
        self,
        xml: bool = True,  # noqa: FBT001, FBT002
        codecs: Sequence[str] | frozenset[str] = ('none',),
        message: str = '',
    ) -> None:
        self.xml = bool(xml)
        self.codecs = frozenset(codecs)
        self.message = message

    @property
    def available(self) -> bool:
        """OME-XML files can be opened."""
        return self.xml

    def require(self) -> None:
        """Raise MissingOmeSupportError if OME-XML files cannot be opened."""
        if not self.available:
            msg = self.message or 'OME-XML support is not available'
            raise MissingOmeSupportError(msg)

    def __repr__(self) -> str:
        codecs = ', '.join(sorted(self.codecs))
        return f'<OmeSupport xml={self.xml} codecs=({codecs})>'


def detect_ome_support() -> OmeSupport:
    """Return capabilities available for reading OME-XML files.

    The expat parser, which is optional in some Python builds, is required
    to parse metadata. Compression schemes require the imagecodecs package.

    """
    xml = True
    message = ''
    try:
        import xml.parsers.expat  # noqa: F401
    except ImportError as exc:
        xml = False
        message = (
            'reading OME-XML metadata requires the expat XML parser, '
            f'which failed to import: {exc!r:.128}'
        )
    from .codecs import CompressionCodec

    return OmeSupport(xml, frozenset(CompressionCodec()), message)


def _localname(tag: Any, /) -> str:
    """Return tag name without namespace."""
    if not isinstance(tag, str):
        return ''
    return tag.rsplit('}', 1)[-1].rsplit(':', 1)[-1]


@final
class OmeXmlMetadata:
    """Image and Pixels attributes of OME-XML document.

    Implements the accessor methods used to index OME-XML files.
    Accessors return None for missing images or attributes.

    Parameters:
        images:
            Attributes of Pixels elements of each Image element.
        names:
            Name attributes of Image elements.

    Examples:
        >>> meta = OmeXmlMetadata.fromstring(
        ...     '<OME><Image Name="a"><Pixels SizeX="2" SizeY="3"/></Image>'
        ...     '</OME>'
        ... )
        >>> meta.imagecount, meta.size_x(0), meta.size_z(0)
        (1, 2, None)

    """

    __slots__ = ('images', 'names')

    images: list[list[dict[str, str]]]
    """Attributes of Pixels elements of each Image element."""

    names: list[str | None]
    """Name attributes of Image elements."""

    def __init__(
        self,
        images: Sequence[Sequence[Mapping[str, str]]] = (),
        names: Sequence[str | None] | None = None,
    ) -> None:
        self.images = [[dict(p) for p in pixels] for pixels in images]
        if names is None:
            names = [None] * len(self.images)
        self.names = list(names)

    @classmethod
    def fromfile(cls, fh: FileHandle | IO[bytes], /) -> OmeXmlMetadata:
        """Return metadata parsed from file.

        The file is parsed incrementally. Text of BinData elements is
        discarded while parsing.

        """
        fh.seek(0)
        return cls._parse(fh, getattr(fh, 'name', ''))

    @classmethod
    def fromstring(cls, xml: str | bytes, /) -> OmeXmlMetadata:
        """Return metadata parsed from OME-XML string."""
        if isinstance(xml, str):
            xml = xml.encode()
        return cls._parse(io.BytesIO(xml), 'string')

    @classmethod
    def _parse(cls, source: Any, name: str, /) -> OmeXmlMetadata:
        from xml.etree import ElementTree

        images: list[list[dict[str, str]]] = []
        names: list[str | None] = []
        depth = 0  # nesting level inside current Image element
        try:
            for event, element in ElementTree.iterparse(
                source, events=('start', 'end')
            ):
                tag = _localname(element.tag)
                if event == 'start':
                    if depth:
                        depth += 1
                        if tag == 'Pixels':
                            images[-1].append(dict(element.attrib))
                    elif tag == 'Image':
                        depth = 1
                        images.append([])
                        names.append(element.attrib.get('Name'))
                    continue
                if depth:
                    depth -= 1
                if tag == 'BinData' or (tag == 'Image' and not depth):
                    element.clear()
        except ElementTree.ParseError as exc:
            logger().warning(
                f'{name!r} OME-XML parsing stopped after '
                f'{len(images)} images, raised {exc!r:.128}'
            )
        return cls(images, names)

    @property
    def imagecount(self) -> int:
        """Number of Image elements."""
        return len(self.images)

    def pixels(self, image: int, pixels: int = 0, /) -> dict[str, str] | None:
        """Return attributes of Pixels element, or None if missing."""
        try:
            return self.images[image][pixels]
        except IndexError:
            return None

    def _int(self, image: int, pixels: int, name: str, /) -> int | None:
        attrib = self.pixels(image, pixels)
        if attrib is None or name not in attrib:
            return None
        try:
            return int(attrib[name])
        except ValueError:
            logger().warning(
                f'Image {image} has invalid {name}={attrib[name]!r}'
            )
            return None

    def _str(self, image: int, pixels: int, name: str, /) -> str | None:
        attrib = self.pixels(image, pixels)
        if attrib is None:
            return None
        return attrib.get(name)

    def size_x(self, image: int, pixels: int = 0, /) -> int | None:
        """Return SizeX of Pixels."""
        return self._int(image, pixels, 'SizeX')

    def size_y(self, image: int, pixels: int = 0, /) -> int | None:
        """Return SizeY of Pixels."""
        return self._int(image, pixels, 'SizeY')

    def size_z(self, image: int, pixels: int = 0, /) -> int | None:
        """Return SizeZ of Pixels."""
        return self._int(image, pixels, 'SizeZ')

    def size_c(self, image: int, pixels: int = 0, /) -> int | None:
        """Return SizeC of Pixels."""
        return self._int(image, pixels, 'SizeC')

    def size_t(self, image: int, pixels: int = 0, /) -> int | None:
        """Return SizeT of Pixels."""
        return self._int(image, pixels, 'SizeT')

    def pixel_type(self, image: int, pixels: int = 0, /) -> str | None:
        """Return PixelType of Pixels, for example, 'uint16'."""
        return self._str(image, pixels, 'PixelType')

    def dimension_order(self, image: int, pixels: int = 0, /) -> str | None:
        """Return DimensionOrder of Pixels, for example, 'XYZCT'."""
        return self._str(image, pixels, 'DimensionOrder')

    def __repr__(self) -> str:
        return f'<OmeXmlMetadata {self.imagecount} images>'

    def __str__(self) -> str:
        return indent(
            repr(self),
            *(
                f'Image {i} {name!r}: {self.pixels(i)}'
                for i, name in enumerate(self.names)
            ),
        )


class MetadataStore:
    """Receive series of OME-XML file.

    The reader adds one record per series after indexing the file.
    Subclass to forward records to other metadata models.

    """

    series: list[OmeXmlSeries]
    """Series records in order of series index."""

    metadata: Any
    """Metadata accessor the series were bound from."""

    def __init__(self) -> None:
        self.series = []
        self.metadata = None

    def set_metadata(self, metadata: Any, /) -> None:
        """Set metadata accessor of file."""
        self.metadata = metadata

    def add_series(self, series: OmeXmlSeries, /) -> None:
        """Add series record."""
        self.series.append(series)

    def __len__(self) -> int:
        return len(self.series)

    def __getitem__(self, key: int, /) -> OmeXmlSeries:
        return self.series[key]

    def __iter__(self) -> Iterator[OmeXmlSeries]:
        return iter(self.series)

    def __repr__(self) -> str:
        return f'<MetadataStore {len(self.series)} series>'
