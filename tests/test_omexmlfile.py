"""Tests for reading OME-XML files."""

from __future__ import annotations

import base64
import bz2
import io
import logging
import zlib

import numpy
import pytest

import omexmlfile
from omexmlfile import (
    COMPRESSION,
    OMEXML,
    PIXELTYPE,
    BufferTooSmallError,
    CompressionCodec,
    DecompressionError,
    InvalidPlaneIndexError,
    InvalidRegionError,
    MetadataStore,
    MissingMetadataError,
    MissingOmeSupportError,
    NotOmeXmlError,
    OmeSupport,
    OmeXmlFile,
    OmeXmlFileError,
    OmeXmlMetadata,
    PixelDataNotFoundError,
    SizeMismatchError,
    Timer,
    detect_ome_support,
    extract_region,
    imread,
)
from omexmlfile.codecs import bzip2_decode

from generate_omexml_data import (
    omexml_document,
    pixels_element,
    random_planes,
)


def open_bytes(data, **kwargs):
    return OmeXmlFile(io.BytesIO(data), name='test.ome', **kwargs)


# --- Unit tests ---


class TestPixelType:
    """Tests for PIXELTYPE."""

    @pytest.mark.parametrize(
        ('name', 'pixeltype', 'dtype'),
        [
            ('int8', PIXELTYPE.INT8, 'i1'),
            ('uint8', PIXELTYPE.UINT8, 'u1'),
            ('int16', PIXELTYPE.INT16, 'i2'),
            ('Uint16', PIXELTYPE.UINT16, 'u2'),
            ('int32', PIXELTYPE.INT32, 'i4'),
            ('uint32', PIXELTYPE.UINT32, 'u4'),
            ('float', PIXELTYPE.FLOAT, 'f4'),
            ('FLOAT', PIXELTYPE.FLOAT, 'f4'),
            ('bit', PIXELTYPE.INT8, 'i1'),
            ('double', PIXELTYPE.INT8, 'i1'),
        ],
    )
    def test_from_string(self, name, pixeltype, dtype):
        result = PIXELTYPE.from_string(name)
        assert result == pixeltype
        assert f'{result.kind}{result.bytesperpixel}' == dtype

    def test_compression(self):
        assert COMPRESSION('zlib') == COMPRESSION.ZLIB
        assert COMPRESSION.BZIP2 == 'bzip2'
        assert [c.value for c in COMPRESSION] == ['none', 'zlib', 'bzip2']


class TestCodecs:
    """Tests for CompressionCodec."""

    def test_codecs(self):
        codecs = CompressionCodec()
        assert set(codecs) == {'none', 'zlib', 'bzip2'}
        assert len(codecs) == 3
        assert 'jpeg' not in codecs
        with pytest.raises(KeyError, match='not a known'):
            codecs['jpeg']

    def test_zlib(self):
        data = bytes(range(256)) * 4
        assert bytes(CompressionCodec()['zlib'](zlib.compress(data))) == data

    def test_bzip2(self):
        data = bytes(range(256)) * 4
        assert bytes(bzip2_decode(bz2.compress(data))) == data
        # the first two bytes are not part of the stream
        assert bytes(bzip2_decode(b'\0\0' + bz2.compress(data)[2:])) == data


class TestExtractRegion:
    """Tests for extract_region."""

    def test_region(self):
        plane = bytes(range(100))
        result = extract_region(plane, 10, 10, 1, 2, 3, 4, 2)
        assert len(result) == 8
        assert bytes(result) == bytes([32, 33, 34, 35, 42, 43, 44, 45])

    def test_region_multibyte(self):
        data = numpy.arange(30, dtype='<u2').reshape(5, 6)
        out = numpy.zeros((2, 3), dtype='<u2')
        result = extract_region(data.tobytes(), 6, 5, 2, 1, 2, 3, 2, out=out)
        assert result is out
        numpy.testing.assert_array_equal(out, data[2:4, 1:4])

    def test_whole_plane(self):
        plane = bytes(range(12))
        assert bytes(extract_region(plane, 4, 3, 1, 0, 0, 4, 3)) == plane

    def test_empty_region(self):
        assert bytes(extract_region(bytes(12), 4, 3, 1, 4, 3, 0, 0)) == b''

    @pytest.mark.parametrize(
        'region',
        [
            (-1, 0, 2, 2),
            (0, -1, 2, 2),
            (3, 0, 2, 2),
            (0, 2, 2, 2),
            (0, 0, -1, 1),
        ],
    )
    def test_invalid_region(self, region):
        with pytest.raises(InvalidRegionError, match='not contained'):
            extract_region(bytes(12), 4, 3, 1, *region)

    def test_buffer_too_small(self):
        with pytest.raises(BufferTooSmallError):
            extract_region(bytes(12), 4, 3, 1, 0, 0, 2, 2, out=bytearray(3))

    def test_strided_output(self):
        out = numpy.zeros((2, 8), numpy.uint8)[:, ::2]
        with pytest.raises(ValueError, match='C-contiguous'):
            extract_region(bytes(12), 4, 3, 1, 0, 0, 4, 2, out=out)

    def test_plane_too_small(self):
        with pytest.raises(SizeMismatchError):
            extract_region(bytes(11), 4, 3, 1, 0, 0, 2, 2)


class TestMetadata:
    """Tests for OmeXmlMetadata and capability detection."""

    def test_fromstring(self):
        data = random_planes((2, 4, 5))
        meta = OmeXmlMetadata.fromstring(
            omexml_document(
                ('first', pixels_element(data, sizes=(1, 2, 1))),
                ('second', pixels_element(data[:1], pixeltype='float')),
            )
        )
        assert meta.imagecount == 2
        assert meta.names == ['first', 'second']
        assert meta.size_x(0) == 5
        assert meta.size_y(0) == 4
        assert (meta.size_z(0), meta.size_c(0), meta.size_t(0)) == (1, 2, 1)
        assert meta.pixel_type(1) == 'float'
        assert meta.dimension_order(1) == 'XYZCT'
        assert meta.size_x(2) is None
        assert meta.pixels(0, 1) is None

    def test_truncated_document(self, caplog):
        meta = OmeXmlMetadata.fromstring(
            '<OME><Image Name="a"><Pixels SizeX="2"/></Image><Image'
        )
        assert meta.imagecount == 1
        assert meta.size_x(0) == 2
        assert 'parsing stopped' in caplog.text

    def test_invalid_attribute(self, caplog):
        meta = OmeXmlMetadata.fromstring(
            '<OME><Image><Pixels SizeX="two"/></Image></OME>'
        )
        assert meta.size_x(0) is None
        assert 'invalid SizeX' in caplog.text

    def test_detect_ome_support(self):
        support = detect_ome_support()
        assert support.available
        assert support.codecs == {'none', 'zlib', 'bzip2'}
        support.require()

    def test_missing_support(self):
        support = OmeSupport(xml=False, message='expat is not available')
        assert not support.available
        with pytest.raises(MissingOmeSupportError, match='expat'):
            support.require()


# --- Integration tests with synthetic OME-XML files ---


class TestOmeXmlFile:
    """Integration tests for reading OME-XML files."""

    @pytest.fixture
    def series_file(self, tmp_path):
        """Create OME-XML file with uint16 zlib and int32 bzip2 series."""
        data0 = random_planes((3, 32, 31))
        data1 = random_planes((4, 16, 17), 'int32', seed=1)
        fname = tmp_path / 'series.ome'
        fname.write_bytes(
            omexml_document(
                ('zlib', pixels_element(data0, compression='zlib')),
                (
                    'bzip2',
                    pixels_element(
                        data1,
                        pixeltype='int32',
                        compression='bzip2',
                        bigendian=True,
                        sizes=(1, 2, 2),
                    ),
                ),
            )
        )
        return str(fname), data0, data1

    @pytest.mark.parametrize('compression', ['none', 'zlib', 'bzip2'])
    @pytest.mark.parametrize('bigendian', [False, True])
    def test_compression(self, compression, bigendian):
        data = random_planes((3, 8, 10))
        with open_bytes(
            omexml_document(
                (
                    'test',
                    pixels_element(
                        data, compression=compression, bigendian=bigendian
                    ),
                )
            )
        ) as omexml:
            series = omexml.series[0]
            assert series.compression == compression
            assert series.littleendian is not bigendian
            assert series.imagecount == 3
            assert series.dtype == numpy.dtype('>u2' if bigendian else '<u2')
            for i in range(3):
                plane = omexml.openbytes(i)
                assert len(plane) == 160
                image = numpy.frombuffer(plane, series.dtype).reshape(8, 10)
                numpy.testing.assert_array_equal(image, data[i])
            numpy.testing.assert_array_equal(omexml.asarray(None), data)

    @pytest.mark.parametrize(
        'pixeltype', ['int8', 'uint8', 'int16', 'uint32', 'float']
    )
    def test_pixeltypes(self, pixeltype):
        data = random_planes((2, 5, 7), pixeltype)
        with open_bytes(
            omexml_document(
                ('test', pixels_element(data, pixeltype=pixeltype))
            )
        ) as omexml:
            image = omexml.asarray(1)
        assert image.dtype.kind == data.dtype.kind
        assert image.dtype.itemsize == data.dtype.itemsize
        numpy.testing.assert_array_equal(image, data[1])

    def test_series(self, series_file):
        fname, data0, data1 = series_file
        with OmeXmlFile(fname) as omexml:
            assert omexml.filename == 'series.ome'
            assert len(omexml.series) == 2
            s0, s1 = omexml.series
            assert s0.name == 'zlib'
            assert s0.shape == (32, 31)
            assert s0.imagecount == 3
            assert s0.end == s1.offsets[0]
            assert s0.imageoffset < s0.offsets[0]
            assert s0.offsets[-1] < s1.imageoffset < s1.offsets[0]
            assert s1.name == 'bzip2'
            assert s1.pixeltype == PIXELTYPE.INT32
            assert s1.dtype == numpy.dtype('>i4')
            assert (s1.sizez, s1.sizec, s1.sizet) == (1, 2, 2)
            assert s1.imagecount == 4
            assert s1.end == omexml.filehandle.size
            assert list(s0.offsets) == sorted(set(s0.offsets))
            numpy.testing.assert_array_equal(omexml.asarray(None), data0)
            numpy.testing.assert_array_equal(
                omexml.asarray(None, series=1), data1
            )
            numpy.testing.assert_array_equal(
                omexml.asarray(3, series=1), data1[3]
            )
            assert len(omexml.store) == 2
            assert omexml.store[1] is s1
            assert omexml.store.metadata is omexml.metadata
            assert 'zlib' in omexml._str(detail=2)
            assert repr(omexml) == "<omexmlfile.OmeXmlFile 'series.ome'>"
            fh = omexml.filehandle
            assert fh.path.endswith('series.ome')
            assert fh.is_file
        assert fh.closed

    @pytest.mark.parametrize('windowsize', [32, 100, 4096])
    def test_windowsize(self, series_file, windowsize):
        fname, data0, data1 = series_file
        with OmeXmlFile(fname) as omexml:
            expected = [s.offsets for s in omexml.series]
        with OmeXmlFile(fname, windowsize=windowsize) as omexml:
            assert [s.offsets for s in omexml.series] == expected
            numpy.testing.assert_array_equal(
                omexml.asarray(None, series=1), data1
            )

    @pytest.mark.parametrize('maxworkers', [0, 2])
    def test_maxworkers(self, series_file, maxworkers):
        fname, data0, data1 = series_file
        with OmeXmlFile(fname, maxworkers=1) as omexml:
            expected = [(s.offsets, s.imagecount) for s in omexml.series]
        with OmeXmlFile(fname, maxworkers=maxworkers) as omexml:
            result = [(s.offsets, s.imagecount) for s in omexml.series]
            assert result == expected
            numpy.testing.assert_array_equal(omexml.asarray(None), data0)

    def test_indexing_is_idempotent(self, series_file):
        fname = series_file[0]
        with OmeXmlFile(fname) as first, OmeXmlFile(fname) as second:
            for s0, s1 in zip(first.series, second.series):
                assert s0.offsets == s1.offsets
                assert s0.end == s1.end
                assert s0.imagecount == s1.imagecount

    def test_short_series(self, caplog):
        data = random_planes((4, 6, 5))
        with open_bytes(
            omexml_document(('short', pixels_element(data, sizes=(5, 1, 1))))
        ) as omexml:
            series = omexml.series[0]
            assert series.planecount == 5
            assert series.imagecount == 4
            assert len(series.offsets) == 4
            numpy.testing.assert_array_equal(omexml.asarray(None), data)
            with pytest.raises(InvalidPlaneIndexError, match='out of range'):
                omexml.openbytes(4)
        assert 'missing 1 of 5 planes' in caplog.text

    def test_compressed_planes_smaller_than_skip(self):
        # zeros compress well: skipping half the plane size overshoots
        data = numpy.zeros((5, 64, 64), numpy.uint16)
        data[:, 0, 0] = numpy.arange(5)
        pixels = pixels_element(data, compression='zlib')
        with open_bytes(omexml_document(('zeros', pixels))) as omexml:
            assert omexml.series[0].imagecount == 5
            numpy.testing.assert_array_equal(omexml.asarray(None), data)

    def test_external_bindata_excluded(self):
        data = random_planes((2, 4, 4))
        with open_bytes(
            omexml_document(('test', pixels_element(data, external=True)))
        ) as omexml:
            series = omexml.series[0]
            assert series.imagecount == 2
            numpy.testing.assert_array_equal(omexml.asarray(0), data[0])

    def test_embedded_file(self):
        data = random_planes((2, 4, 6))
        document = omexml_document(('test', pixels_element(data)))
        fh = io.BytesIO(b'\0' * 17 + document + b'\0' * 5)
        with OmeXmlFile(fh, offset=17, size=len(document)) as omexml:
            assert omexml.filehandle.size == len(document)
            numpy.testing.assert_array_equal(omexml.asarray(None), data)

    def test_openbytes(self):
        data = random_planes((2, 10, 10), 'uint8')
        with open_bytes(
            omexml_document(('test', pixels_element(data, pixeltype='uint8')))
        ) as omexml:
            region = omexml.openbytes(1, None, 2, 3, 4, 2)
            assert bytes(region) == data[1, 3:5, 2:6].tobytes()
            buffer = bytearray(10)
            result = omexml.openbytes(1, buffer, 2, 3, 4, 2)
            assert result is buffer
            assert bytes(buffer[:8]) == data[1, 3:5, 2:6].tobytes()
            assert bytes(omexml.openbytes(0, None, 8, 8)) == (
                data[0, 8:, 8:].tobytes()
            )

    def test_openbytes_errors(self):
        data = random_planes((2, 10, 10), 'uint8')
        with open_bytes(
            omexml_document(('test', pixels_element(data, pixeltype='uint8')))
        ) as omexml:
            with pytest.raises(InvalidPlaneIndexError):
                omexml.openbytes(2)
            with pytest.raises(IndexError):
                omexml.openbytes(-1)
            with pytest.raises(BufferTooSmallError, match='too small'):
                omexml.openbytes(0, bytearray(7), 2, 3, 4, 2)
            with pytest.raises(InvalidRegionError):
                omexml.openbytes(0, None, 8, 0, 4, 2)
            with pytest.raises(IndexError, match='series 1 out of range'):
                omexml.openbytes(0, series=1)

    def test_openbytes_buffer_layout(self):
        data = random_planes((2, 6, 10), 'uint8')
        with open_bytes(
            omexml_document(('test', pixels_element(data, pixeltype='uint8')))
        ) as omexml:
            strided = numpy.zeros((6, 20), numpy.uint8)[:, ::2]
            with pytest.raises(ValueError, match='C-contiguous'):
                omexml.openbytes(0, strided)
            with pytest.raises(ValueError, match='writable'):
                omexml.openbytes(0, bytes(60))
            with pytest.raises(ValueError, match='C-contiguous'):
                omexml.asarray(0, out=strided)
            # reader remains usable
            numpy.testing.assert_array_equal(omexml.asarray(1), data[1])

    def test_asarray_region(self):
        data = random_planes((3, 12, 9))
        with open_bytes(
            omexml_document(('test', pixels_element(data)))
        ) as omexml:
            image = omexml.asarray(2, region=(1, 2, 5, 4))
            numpy.testing.assert_array_equal(image, data[2, 2:6, 1:6])
            out = numpy.zeros((3, 4, 5), '<u2')
            result = omexml.asarray(None, region=(1, 2, 5, 4), out=out)
            assert result is out
            numpy.testing.assert_array_equal(out, data[:, 2:6, 1:6])
            with pytest.raises(ValueError):
                omexml.asarray(0, out=numpy.zeros((12, 9), '>u2'))

    def test_uncompressed_size_mismatch(self):
        data = random_planes((1, 4, 4))
        planes = [base64.encodebytes(data.tobytes()[:-2])]
        with open_bytes(
            omexml_document(('test', pixels_element(data, planes=planes)))
        ) as omexml:
            with pytest.raises(SizeMismatchError, match='does not match'):
                omexml.asarray(0)

    def test_decompressed_size_mismatch(self):
        data = random_planes((2, 4, 4))
        planes = [
            base64.encodebytes(zlib.compress(data[0].tobytes()[:-1])),
            base64.encodebytes(zlib.compress(data[1].tobytes() + b'extra')),
        ]
        with open_bytes(
            omexml_document(
                (
                    'test',
                    pixels_element(data, compression='zlib', planes=planes),
                )
            )
        ) as omexml:
            with pytest.raises(SizeMismatchError, match='smaller'):
                omexml.asarray(0)
            # excess decompressed bytes are ignored
            numpy.testing.assert_array_equal(omexml.asarray(1), data[1])

    def test_corrupt_stream(self):
        data = random_planes((1, 4, 4))
        planes = [base64.encodebytes(b'this is not a zlib stream')]
        with open_bytes(
            omexml_document(
                (
                    'test',
                    pixels_element(data, compression='zlib', planes=planes),
                )
            )
        ) as omexml:
            with pytest.raises(DecompressionError, match='plane 0'):
                omexml.asarray(0)

    def test_unknown_compression(self):
        data = random_planes((1, 4, 4))
        planes = [base64.encodebytes(data.tobytes())]
        with open_bytes(
            omexml_document(
                (
                    'test',
                    pixels_element(data, compression='LZW', planes=planes),
                )
            )
        ) as omexml:
            assert omexml.series[0].compression == 'lzw'
            with pytest.raises(DecompressionError, match='lzw'):
                omexml.asarray(0)

    def test_omexml_override(self):
        data = random_planes((2, 4, 6))
        document = omexml_document(('test', pixels_element(data)))
        override = omexml_document(
            ('renamed', pixels_element(data, pixeltype='int16'))
        ).decode()
        with open_bytes(document, omexml=override) as omexml:
            assert omexml.series[0].name == 'renamed'
            assert omexml.series[0].pixeltype == PIXELTYPE.INT16
        with pytest.raises(ValueError, match='invalid OME-XML'):
            open_bytes(document, omexml='<Image/>')

    def test_metadata_and_store_injection(self):
        data = random_planes((2, 4, 6))
        document = omexml_document(('test', pixels_element(data)))
        metadata = OmeXmlMetadata(
            [
                [
                    {
                        'SizeX': '6',
                        'SizeY': '4',
                        'SizeZ': '1',
                        'SizeC': '1',
                        'SizeT': '2',
                        'PixelType': 'uint16',
                        'DimensionOrder': 'XYCZT',
                    }
                ]
            ],
            ['injected'],
        )
        store = MetadataStore()
        with open_bytes(document, metadata=metadata, store=store) as omexml:
            assert omexml.metadata is metadata
            assert omexml.store is store
            assert store.series[0].name == 'injected'
            assert store.series[0].sizet == 2
            assert store.series[0].dimensionorder == 'XYCZT'

    def test_missing_metadata(self):
        data = random_planes((1, 4, 4))
        with pytest.raises(MissingMetadataError, match='SizeC'):
            open_bytes(
                omexml_document(
                    (
                        'test',
                        pixels_element(data, attributes={'SizeC': None}),
                    )
                )
            )

    def test_no_pixel_data(self):
        document = (
            b'<?xml version="1.0"?>\n<OME><Image ID="Image:0">'
            b'<Pixels SizeX="1" SizeY="1"/></Image></OME>\n'
        )
        with pytest.raises(PixelDataNotFoundError, match='BigEndian'):
            open_bytes(document)

    def test_no_bindata(self):
        document = (
            b'<?xml version="1.0"?>\n<OME><Image ID="Image:0">'
            b'<Pixels BigEndian="false"/></Image></OME>\n'
        )
        with pytest.raises(PixelDataNotFoundError, match='series 0'):
            open_bytes(document)

    @pytest.mark.parametrize(
        'header',
        [
            b'',
            b'II*\0\x08\0\0\0',
            b'<OME xmlns="http://www.openmicroscopy.org/Schemas/OME/2016-06">',
            b'<?xml version="1.0"?><svg xmlns="http://www.w3.org/2000/svg"/>',
        ],
    )
    def test_not_omexml(self, header):
        assert not OmeXmlFile.is_omexml(header)
        with pytest.raises(NotOmeXmlError):
            open_bytes(header)

    def test_missing_ome_support(self):
        data = random_planes((1, 4, 4))
        document = omexml_document(('test', pixels_element(data)))
        support = OmeSupport(xml=False, message='no XML parser')
        with pytest.raises(MissingOmeSupportError, match='no XML parser'):
            open_bytes(document, support=support)

    def test_exceptions(self):
        assert issubclass(OmeXmlFileError, ValueError)
        assert issubclass(SizeMismatchError, DecompressionError)
        assert issubclass(InvalidPlaneIndexError, IndexError)

    def test_imread(self, series_file):
        fname, data0, data1 = series_file
        numpy.testing.assert_array_equal(imread(fname), data0[0])
        numpy.testing.assert_array_equal(
            imread(fname, key=2, series=1, region=(3, 4, 5, 6)),
            data1[2, 4:10, 3:8],
        )

    def test_logging(self, series_file, caplog):
        with caplog.at_level(logging.DEBUG, logger='omexmlfile'):
            with OmeXmlFile(series_file[0]):
                pass
        assert 'determining endianness' in caplog.text

    def test_constants(self):
        assert OMEXML.WINDOW_SIZE >= 64
        assert OMEXML.MAXWORKERS >= 1
        assert OMEXML.BINDATA_EXCLUDE == (b'<Bin:External', b'<Bin:BinaryFile')


class TestMain:
    """Tests for the command line script."""

    def test_main(self, tmp_path, capsys):
        data = random_planes((2, 8, 9))
        fname = tmp_path / 'main.ome'
        fname.write_bytes(
            omexml_document(('test', pixels_element(data, compression='zlib')))
        )
        assert omexmlfile.main([str(fname), '-q', '-p', '1']) == 0
        output = capsys.readouterr().out
        assert 'shape: (8, 9)' in output
        assert f'max: {data[1].max()}' in output
        assert omexmlfile.main([str(fname), '-q', '-r', '1,2,3,4']) == 0
        assert 'shape: (4, 3)' in capsys.readouterr().out
        assert omexmlfile.main([str(fname), '-q', '--nodata']) == 0

    def test_main_error(self, tmp_path, capsys):
        fname = tmp_path / 'not.ome'
        fname.write_bytes(b'not an OME-XML file')
        assert omexmlfile.main([str(fname), '-q']) == 1
        assert 'NotOmeXmlError' in capsys.readouterr().out
        with pytest.raises(NotOmeXmlError):
            omexmlfile.main([str(fname), '-q', '--debug'])

    def test_timer(self, capsys):
        timer = Timer('Reading:')
        assert timer.start() == timer.started
        assert str(timer).endswith(' s')
        assert capsys.readouterr().out == 'Reading: '
