"""JSON metadata for sent descriptors.
"""
from __future__ import annotations

import io
import json

from ._typing import MYPY_CHECK_RUNNING

if MYPY_CHECK_RUNNING:
    from typing import BinaryIO, Union

    from ._typing import BytesLike


class Meta(dict):
    """Metadata that describes a descriptor, e.g. its address or purpose.

    Values must be JSON-serializable. Can be passed directly as `meta` to
    ResponseWriter.write.
    """

    def write_to(self, stream: BinaryIO) -> int:
        data = json.dumps(self, separators=(',', ':')).encode('utf-8')
        return stream.write(data)

    def read_from(self, data: Union[BytesLike, BinaryIO]) -> int:
        """Update from an encoded Meta.

        Returns:
            number of bytes consumed
        """
        if isinstance(data, io.IOBase):
            data = data.read()
        data = bytes(data)
        if data:
            self.update(json.loads(data.decode('utf-8')))
        return len(data)

    @classmethod
    def from_bytes(cls, data: Union[BytesLike, BinaryIO]) -> Meta:
        m = cls()
        m.read_from(data)
        return m

    def __bytes__(self):
        buf = io.BytesIO()
        self.write_to(buf)
        return buf.getvalue()
