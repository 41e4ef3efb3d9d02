from typing import Callable, Union


MYPY_CHECK_RUNNING = False

ReceiveCallback = Callable[[int, bytes], None]
BytesLike = Union[bytes, bytearray, memoryview]
