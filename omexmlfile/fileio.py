# fileio.py

"""File I/O helpers for omexmlfile."""

from __future__ import annotations

import contextlib
import io
import os
import time
from datetime import timedelta as TimeDelta
from typing import IO, TYPE_CHECKING, cast, final

if TYPE_CHECKING:
    from types import TracebackType
    from typing import Any, Literal, Self

from .utils import snipstr


@final
class Timer:
    """Stopwatch for timing execution speed.

    Parameters:
        message:
            Message to print.
        end:
            End of print statement.
        started:
            Value of performance counter when started.
            The default is the current performance counter.

    Examples:
        >>> timer = Timer(started=0.0)
        >>> str(timer).endswith(' s')
        True

    """

    __slots__ = ('started',)

    started: float
    """Value of performance counter when started."""

    def __init__(
        self,
        message: str | None = None,
        *,
        end: str = ' ',
        started: float | None = None,
    ) -> None:
        if message is not None:
            print(message, end=end, flush=True)
        if started is None:
            started = time.perf_counter()
        self.started = started

    def start(self, message: str | None = None, *, end: str = ' ') -> float:
        """Start timer and return current time."""
        if message is not None:
            print(message, end=end, flush=True)
        self.started = time.perf_counter()
        return self.started

    def __str__(self) -> str:
        """Return duration from timer start till now."""
        duration = time.perf_counter() - self.started
        s = str(TimeDelta(seconds=duration))
        i = 0
        while i < len(s) and s[i : i + 2] in '0:0010203040506070809':
            i += 1
        if s[i : i + 1] == ':':
            i += 1
        return f'{s[i:]} s'

    def __repr__(self) -> str:
        return f'Timer(started={self.started})'


class FileHandle:
    """Binary file handle.

    A limited, special purpose binary file handle that can:

    - handle embedded files (for example, OME-XML within another file).
    - re-open closed files.
    - read at most the size of embedded files.
    - create independent handles on the same file for worker threads.

    When initialized from another file handle, do not use the other handle
    unless this FileHandle is closed.

    FileHandle instances are not thread-safe. Scans and reads move the
    file position; each thread must use its own handle (see
    :py:meth:`FileHandle.clone`).

    Parameters:
        file:
            File name or seekable binary stream, such as open file,
            BytesIO, or fsspec OpenFile.
        name:
            Name of file if `file` is binary stream.
        offset:
            Start position of embedded file.
            The default is the current file position.
        size:
            Size of embedded file.
            The default is the number of bytes from `offset` to
            the end of the file.

    """

    __slots__ = (
        '_close',
        '_dir',
        '_fh',
        '_file',
        '_name',
        '_offset',
        '_size',
    )

    _file: str | os.PathLike[Any] | FileHandle | IO[bytes] | None
    _fh: IO[bytes] | None
    _name: str
    _dir: str
    _offset: int
    _size: int
    _close: bool

    def __init__(
        self,
        file: str | os.PathLike[Any] | FileHandle | IO[bytes],
        /,
        *,
        name: str | None = None,
        offset: int | None = None,
        size: int | None = None,
    ) -> None:
        self._fh = None
        self._file = file  # reference to original argument for re-opening
        self._name = name if name else ''
        self._dir = ''
        self._offset = -1 if offset is None else offset
        self._size = -1 if size is None else size
        self._close = True
        self.open()
        assert self._fh is not None

    def open(self) -> None:
        """Open or re-open file."""
        if self._fh is not None:
            return  # file is open

        if isinstance(self._file, os.PathLike):
            self._file = os.fspath(self._file)

        if isinstance(self._file, str):
            # file name
            self._file = os.path.realpath(self._file)
            self._dir, self._name = os.path.split(self._file)
            self._fh = open(self._file, 'rb')  # noqa: SIM115
            self._close = True
            self._offset = max(0, self._offset)
        elif isinstance(self._file, FileHandle):
            # FileHandle
            self._fh = self._file._fh
            self._offset = max(0, self._offset)
            self._offset += self._file._offset
            self._close = False
            if not self._name:
                if self._offset:
                    name, ext = os.path.splitext(self._file._name)
                    self._name = f'{name}@{self._offset}{ext}'
                else:
                    self._name = self._file._name
            self._dir = self._file._dir
        elif hasattr(self._file, 'seek'):
            # binary stream: open file, BytesIO, fsspec LocalFileOpener
            if isinstance(self._file, io.TextIOBase):
                msg = f'{self._file!r} is not open in binary mode'
                raise TypeError(msg)
            self._fh = cast(IO[bytes], self._file)
            try:
                self._fh.tell()
            except Exception:
                msg = 'binary stream is not seekable'
                raise ValueError(msg) from None

            if self._offset < 0:
                self._offset = self._fh.tell()
            self._close = False
            if not self._name:
                try:
                    self._dir, self._name = os.path.split(self._fh.name)
                except (AttributeError, TypeError):
                    self._name = 'Unnamed binary stream'
        elif hasattr(self._file, 'open'):
            # fsspec OpenFile
            _file: Any = self._file
            self._fh = cast(IO[bytes], _file.open())
            try:
                self._fh.tell()
            except Exception:
                with contextlib.suppress(Exception):
                    self._fh.close()
                msg = 'OpenFile is not seekable'
                raise ValueError(msg) from None

            if self._offset < 0:
                self._offset = self._fh.tell()
            self._close = True
            if not self._name:
                try:
                    self._dir, self._name = os.path.split(_file.path)
                except AttributeError:
                    self._name = 'Unnamed binary stream'
        else:
            msg = (
                'the first parameter must be a file name '
                'or seekable binary file object, '
                f'not {type(self._file)!r}'
            )
            raise ValueError(msg)

        assert self._fh is not None

        if self._offset:
            self._fh.seek(self._offset)

        if self._size < 0:
            pos = self._fh.tell()
            self._fh.seek(0, os.SEEK_END)
            self._size = self._fh.tell() - self._offset
            self._fh.seek(pos)

    def clone(self) -> FileHandle:
        """Return new, independent handle on same file.

        Only files opened by name can be cloned.

        """
        if not isinstance(self._file, str):
            msg = f'{self!r} cannot be re-opened independently'
            raise ValueError(msg)
        return FileHandle(
            self._file, name=self._name, offset=self._offset, size=self._size
        )

    def close(self) -> None:
        """Close file handle."""
        if self._close and self._fh is not None:
            with contextlib.suppress(Exception):
                self._fh.close()
        self._fh = None

    def tell(self) -> int:
        """Return file's current position."""
        assert self._fh is not None
        return self._fh.tell() - self._offset

    def seek(self, offset: int, /, whence: Literal[0, 1, 2] = 0) -> int:
        """Set file's current position.

        Parameters:
            offset:
                Position of file handle relative to position indicated
                by `whence`.
            whence:
                Relative position of `offset`.
                0 (`os.SEEK_SET`) beginning of file (default).
                1 (`os.SEEK_CUR`) current position.
                2 (`os.SEEK_END`) end of file.

        """
        assert self._fh is not None
        if whence == 0:
            return self._fh.seek(self._offset + offset, 0) - self._offset
        if whence == 2:
            return (
                self._fh.seek(self._offset + self._size + offset, 0)
                - self._offset
            )
        return self._fh.seek(offset, whence) - self._offset

    def read(self, size: int = -1, /) -> bytes:
        """Return bytes read from file.

        Parameters:
            size:
                Number of bytes to read from file.
                By default, read until the end of the file.
                Reads never extend beyond the end of embedded files.

        """
        assert self._fh is not None
        remaining = max(0, self._size - self.tell())
        if size < 0 or size > remaining:
            size = remaining
        return self._fh.read(size)

    def readinto(self, buffer: bytearray | memoryview, /) -> int:
        """Read bytes from file into buffer.

        Parameters:
            buffer: Buffer to read into.

        Returns:
            Number of bytes read from file.
            Less than the size of the buffer only at end of file.

        """
        assert self._fh is not None
        view = memoryview(buffer).cast('B')
        remaining = max(0, self._size - self.tell())
        if len(view) > remaining:
            view = view[:remaining]
        total = 0
        while total < len(view):
            # raw streams may return short reads before end of file
            count = self._fh.readinto(  # type: ignore[attr-defined]
                view[total:]
            )
            if not count:
                break
            total += count
        return total

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()
        self._file = None

    def __repr__(self) -> str:
        return f'<omexmlfile.FileHandle {snipstr(self._name, 32)!r}>'

    def __str__(self) -> str:
        return '\n '.join(
            (
                'FileHandle',
                self._name,
                self._dir,
                f'{self._size} bytes',
                'closed' if self._fh is None else 'open',
            )
        )

    @property
    def name(self) -> str:
        """Name of file or stream."""
        return self._name

    @property
    def dirname(self) -> str:
        """Directory in which file is stored."""
        return self._dir

    @property
    def path(self) -> str:
        """Absolute path of file."""
        return os.path.join(self._dir, self._name)

    @property
    def size(self) -> int:
        """Size of file in bytes."""
        return self._size

    @property
    def closed(self) -> bool:
        """File is closed."""
        return self._fh is None

    @property
    def is_file(self) -> bool:
        """File was opened by name and can be cloned."""
        return isinstance(self._file, str)
