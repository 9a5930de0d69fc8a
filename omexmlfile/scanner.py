# scanner.py

"""Streaming search for byte markers in large files."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from .utils import PixelDataNotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from .fileio import FileHandle

__all__ = ['ByteScanner']


@final
class ByteScanner:
    """Find byte pattern in file using fixed-size sliding window.

    The file is read in windows of `windowsize` bytes. The last `carry`
    bytes of each window are copied to the head of the next window, such
    that patterns spanning window boundaries are found. Matches starting
    in the carried bytes are reported by the next window only.

    ByteScanner instances are not thread-safe. Each scan moves the
    position of the file handle.

    Parameters:
        fh:
            File handle to scan.
        pattern:
            Byte string to find, for example, ``b'<Bin'``.
        exclude:
            Byte strings starting with `pattern`. Matches followed by any
            of these are not reported, for example,
            ``(b'<Bin:External', b'<Bin:BinaryFile')``.
        windowsize:
            Size of scan window in bytes.
            The default is :py:attr:`OMEXML.WINDOW_SIZE`.
        carry:
            Number of bytes carried over between windows.
            The default and minimum is the length of the longest of
            `pattern` and `exclude`, minus one.

    Examples:
        >>> from io import BytesIO
        >>> from omexmlfile import FileHandle
        >>> fh = FileHandle(BytesIO(b'<a><Bin:External/><BinData>'))
        >>> scanner = ByteScanner(fh, b'<Bin', exclude=[b'<Bin:External'])
        >>> scanner.find()
        18

    """

    __slots__ = ('_fh', 'carry', 'exclude', 'pattern', 'windowsize')

    pattern: bytes
    """Byte pattern to find."""

    exclude: tuple[bytes, ...]
    """Prefixes of rejected matches."""

    windowsize: int
    """Size of scan window in bytes."""

    carry: int
    """Number of bytes carried over between windows."""

    _fh: FileHandle

    def __init__(
        self,
        fh: FileHandle,
        pattern: bytes,
        /,
        *,
        exclude: Sequence[bytes] = (),
        windowsize: int | None = None,
        carry: int | None = None,
    ) -> None:
        if not pattern:
            msg = 'empty pattern'
            raise ValueError(msg)
        for prefix in exclude:
            if not prefix.startswith(pattern):
                msg = f'{prefix!r} does not start with {pattern!r}'
                raise ValueError(msg)

        minimum = max((len(pattern), *(len(p) for p in exclude))) - 1
        if carry is None:
            carry = minimum
        elif carry < minimum:
            msg = f'{carry=} < {minimum}'
            raise ValueError(msg)
        if windowsize is None:
            from .omexmlfile import OMEXML

            windowsize = OMEXML.WINDOW_SIZE
        if windowsize <= carry:
            msg = f'{windowsize=} must be larger than {carry=}'
            raise ValueError(msg)

        self._fh = fh
        self.pattern = bytes(pattern)
        self.exclude = tuple(bytes(p) for p in exclude)
        self.windowsize = int(windowsize)
        self.carry = int(carry)

    def find(self, offset: int = 0, /, end: int | None = None) -> int:
        """Return file offset of first match at or after offset.

        Parameters:
            offset:
                File position to start scanning at.
            end:
                File position to stop scanning at.
                The default is the end of the file.

        Raises:
            PixelDataNotFoundError: Pattern not found before end.

        """
        for position in self.finditer(offset, end):
            return position
        msg = (
            f'{self.pattern.decode("latin-1")!r} not found '
            f'between offsets {offset} and {self._end(end)}'
        )
        raise PixelDataNotFoundError(msg)

    def finditer(
        self, offset: int = 0, /, end: int | None = None
    ) -> Iterator[int]:
        """Return iterator over file offsets of all matches.

        Parameters:
            offset:
                File position to start scanning at.
            end:
                File position to stop scanning at.
                The default is the end of the file.

        """
        for matches, _ in self._windows(offset, end):
            yield from matches

    def findwindow(
        self, offset: int = 0, /, end: int | None = None
    ) -> tuple[list[int], int]:
        """Return matches in first window containing any match.

        Parameters:
            offset:
                File position to start scanning at.
            end:
                File position to stop scanning at.
                The default is the end of the file.

        Returns:
            matches:
                File offsets of matches in window.
                Empty if there is no match before `end`.
            resume:
                File position at which the next window starts.

        """
        resume = self._end(end)
        for matches, resume in self._windows(offset, end):
            if matches:
                return matches, resume
        return [], resume

    def _end(self, end: int | None, /) -> int:
        """Return end of scan range clipped to size of file."""
        size = self._fh.size
        return size if end is None else max(0, min(end, size))

    def _windows(
        self, offset: int, end: int | None, /
    ) -> Iterator[tuple[list[int], int]]:
        """Return iterator over matches and resume position per window."""
        fh = self._fh
        pattern = self.pattern
        exclude = self.exclude
        carry = self.carry
        windowsize = self.windowsize
        stop = self._end(end)
        offset = max(0, offset)

        buffer = bytearray(windowsize)
        view = memoryview(buffer)
        position = offset  # file offset of buffer[0]
        kept = 0  # bytes carried over from previous window
        while position + kept < stop:
            fh.seek(position + kept)
            size = min(windowsize - kept, stop - position - kept)
            length = kept + fh.readinto(view[kept : kept + size])
            last = position + length >= stop or length < windowsize
            # matches must start before the carried tail
            # unless this is the last window
            limit = length if last else length - carry
            matches = []
            index = buffer.find(pattern, 0, length)
            while 0 <= index < limit:
                if not any(
                    buffer.startswith(prefix, index, length)
                    for prefix in exclude
                ):
                    matches.append(position + index)
                index = buffer.find(pattern, index + 1, length)
            if last:
                yield matches, position + length
                return
            buffer[:carry] = buffer[length - carry : length]
            position += length - carry
            kept = carry
            yield matches, position
