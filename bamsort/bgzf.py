"""
BGZF block access and BAM record-start recovery.

A BGZF file is a series of gzip members of at most 64 KiB each. A virtual
offset ``coffset << 16 | uoffset`` addresses byte ``uoffset`` of the
uncompressed data of the block that starts at file offset ``coffset``.

Input splits are cut at arbitrary byte offsets. To turn a cut into a place
where reading can start, the first block at or after the cut is located from
its header alone, and the first record starting in the uncompressed data is
recognised by checking that a short chain of consecutive records parses.
"""

import os
import struct
import zlib
from typing import BinaryIO, List, NamedTuple, Optional, Tuple

MAGIC = b"\x1f\x8b\x08\x04"

# gzip header up to and including XLEN
HEADER_SIZE = 12

MAX_BLOCK_SIZE = 1 << 16

# block_size, refID, pos, l_read_name, mapq, bin, n_cigar_op, flag,
# l_seq, next_refID, next_pos, tlen
RECORD_FIELDS = struct.Struct("<iiiBBHHHiiii")
CIGAR_OP = struct.Struct("<I")

# highest CIGAR operation code (MIDNSHP=X)
MAX_CIGAR_OP = 8

# consecutive records that must parse before a position counts as a record start
VERIFY_RECORDS = 8


def make_virtual_offset(coffset: int, uoffset: int) -> int:
    return coffset << 16 | uoffset


def split_virtual_offset(voffset: int) -> Tuple[int, int]:
    return voffset >> 16, voffset & 0xFFFF


def block_size(head: bytes) -> Optional[int]:
    """Total size of the block whose header is ``head``; None if it is not BGZF."""
    if len(head) < HEADER_SIZE or head[:4] != MAGIC:
        return None
    (xlen,) = struct.unpack_from("<H", head, 10)
    extra = head[HEADER_SIZE:HEADER_SIZE + xlen]
    pos = 0
    while pos + 4 <= len(extra):
        si1, si2, slen = struct.unpack_from("<BBH", extra, pos)
        if si1 == 66 and si2 == 67 and slen == 2 and pos + 6 <= len(extra):
            (bsize,) = struct.unpack_from("<H", extra, pos + 4)
            return bsize + 1
        pos += 4 + slen
    return None


class Block(NamedTuple):
    coffset: int
    size: int
    data: bytes


class BgzfReader:
    """Block-level reads of an open BGZF file."""

    def __init__(self, fileobj: BinaryIO):
        self._f = fileobj
        self.file_size = os.fstat(fileobj.fileno()).st_size

    def size_at(self, coffset: int) -> Optional[int]:
        self._f.seek(coffset)
        head = self._f.read(HEADER_SIZE)
        if len(head) < HEADER_SIZE or head[:4] != MAGIC:
            return None
        (xlen,) = struct.unpack_from("<H", head, 10)
        return block_size(head + self._f.read(xlen))

    def read_block(self, coffset: int) -> Optional[Block]:
        if coffset >= self.file_size:
            return None
        size = self.size_at(coffset)
        if size is None:
            raise ValueError(f"no BGZF block at offset {coffset}")
        self._f.seek(coffset)
        raw = self._f.read(size)
        if len(raw) < size:
            raise ValueError(f"truncated BGZF block at offset {coffset}")
        try:
            data = zlib.decompress(raw, 31)
        except zlib.error as e:
            raise ValueError(f"corrupt BGZF block at offset {coffset}: {e}") from e
        return Block(coffset, size, data)

    def is_block_at(self, coffset: int) -> bool:
        size = self.size_at(coffset)
        if size is None:
            return False
        following = coffset + size
        if following == self.file_size:
            return True
        return following < self.file_size and self.size_at(following) is not None

    def find_block(self, start: int) -> Optional[int]:
        """Offset of the first block at or after byte ``start``."""
        pos = start
        while pos < self.file_size:
            self._f.seek(pos)
            window = self._f.read(2 * MAX_BLOCK_SIZE)
            i = window.find(MAGIC)
            while i >= 0:
                if self.is_block_at(pos + i):
                    return pos + i
                i = window.find(MAGIC, i + 1)
            # a header may straddle the end of this window
            pos += max(1, len(window) - len(MAGIC) + 1)
        return None


class _Window:
    """Uncompressed data of consecutive blocks, loaded on demand."""

    def __init__(self, reader: BgzfReader, coffset: int):
        self.reader = reader
        self.data = bytearray()
        self.blocks: List[Tuple[int, int]] = []  # (coffset, position in data)
        self.next_coffset = coffset

    def ensure(self, end: int) -> bool:
        """Load blocks until ``end`` bytes are held; False if the file ends first."""
        while len(self.data) < end:
            block = self.reader.read_block(self.next_coffset)
            if block is None:
                return False
            self.blocks.append((block.coffset, len(self.data)))
            self.data += block.data
            self.next_coffset = block.coffset + block.size
        return True

    def at_end(self, pos: int) -> bool:
        return not self.ensure(pos + 1)

    def virtual_offset(self, pos: int) -> Optional[int]:
        """
        Virtual offset of data position ``pos``, or None when ``pos`` is the
        first byte of a block.
        """
        for coffset, start in reversed(self.blocks):
            if start <= pos:
                if pos == start:
                    return None
                return make_virtual_offset(coffset, pos - start)
        raise IndexError(pos)


def _record_size(window: _Window, pos: int, num_references: int) -> Optional[int]:
    """Size in bytes of a plausible BAM record at ``pos``, or None."""
    if not window.ensure(pos + RECORD_FIELDS.size):
        return None
    (size, ref_id, ref_pos, l_read_name, _mapq, _bin, n_cigar, _flag,
     l_seq, next_ref_id, next_pos, _tlen) = RECORD_FIELDS.unpack_from(window.data, pos)

    if not (-1 <= ref_id < num_references and -1 <= next_ref_id < num_references):
        return None
    if ref_pos < -1 or next_pos < -1 or l_read_name < 1 or l_seq < 0:
        return None
    if size < 32 + l_read_name + 4 * n_cigar + (l_seq + 1) // 2 + l_seq:
        return None
    if not window.ensure(pos + 4 + size):
        return None

    name_start = pos + RECORD_FIELDS.size
    name = window.data[name_start:name_start + l_read_name]
    if name[-1] != 0 or not all(33 <= c <= 126 for c in name[:-1]):
        return None

    cigar_start = name_start + l_read_name
    for i in range(n_cigar):
        (op,) = CIGAR_OP.unpack_from(window.data, cigar_start + 4 * i)
        if op & 0xF > MAX_CIGAR_OP:
            return None

    return 4 + size


def _starts_record_chain(window: _Window, pos: int, num_references: int) -> bool:
    for _ in range(VERIFY_RECORDS):
        if window.at_end(pos):
            return True
        size = _record_size(window, pos, num_references)
        if size is None:
            return False
        pos += size
    return True


def find_record_start(reader: BgzfReader, coffset: int, num_references: int) -> Optional[int]:
    """
    Virtual offset of the first record that starts in the block at
    ``coffset`` or later; None if no record starts there.

    A record starting on the first byte of a block has two virtual offsets,
    one per adjacent block, so such records are stepped over.
    """
    window = _Window(reader, coffset)
    pos = 0
    while not window.at_end(pos):
        if _starts_record_chain(window, pos, num_references):
            break
        pos += 1
    else:
        return None

    while not window.at_end(pos):
        voffset = window.virtual_offset(pos)
        if voffset is not None:
            return voffset
        size = _record_size(window, pos, num_references)
        if size is None:
            raise ValueError(f"malformed BAM record after block offset {coffset}")
        pos += size
    return None
