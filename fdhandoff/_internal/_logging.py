import json
import logging
import os
import time

from logging import NullHandler

from .constants import log_env_var


logger = logging.getLogger(__name__)


_default_handler = NullHandler()
_new_handler = None
_root_logger = logging.getLogger('fdhandoff')
_root_logger.addHandler(_default_handler)


def default_configuration(log_file=None):
    """Send all fdhandoff logs to a file, for applications that do not
    configure logging themselves.

    Args:
        log_file: path of the file, defaults to the value of FDHANDOFF_LOG;
            if neither is set the library stays silent

    Raises:
        PermissionError if the log file is not writable
    """
    global _new_handler

    reset_configuration()

    if log_file is None:
        log_file = os.environ.get(log_env_var)

    if not log_file:
        return

    # Let exception propagate.
    with open(log_file, 'a'):
        pass

    formatter = SingleLineFormatter()
    _new_handler = logging.FileHandler(log_file, encoding='utf-8')
    _new_handler.setFormatter(formatter)

    # A server being handed off usually has no stderr to report to.
    def handle_error(record):
        logger.exception('Logging exception handling %r', record)

    _new_handler.handleError = handle_error
    _root_logger.removeHandler(_default_handler)
    _root_logger.addHandler(_new_handler)
    _root_logger.setLevel(logging.DEBUG)
    _root_logger.propagate = False


def reset_configuration():
    """Restore the silent default."""
    global _new_handler
    _root_logger.addHandler(_default_handler)
    if _new_handler is not None:
        _root_logger.removeHandler(_new_handler)
        _new_handler.close()
        _new_handler = None
        _root_logger.setLevel(logging.NOTSET)
        _root_logger.propagate = True


class FuncLogger:
    """Logger built from up to three independent functions.

    Each of `debug`, `info` and `error` is called like `logging.Logger`
    methods, with a %-style format string and its arguments. A missing
    function turns that level into a no-op.
    """
    def __init__(self, debug=None, info=None, error=None):
        self._debug = debug
        self._info = info
        self._error = error

    def debug(self, msg, *args):
        if self._debug is not None:
            self._debug(msg, *args)

    def info(self, msg, *args):
        if self._info is not None:
            self._info(msg, *args)

    def error(self, msg, *args):
        if self._error is not None:
            self._error(msg, *args)


class SingleLineFormatter(logging.Formatter):
    """One record per line: UTC time, level, logger, message with newlines
    escaped, then the process and thread that logged it as JSON.
    """
    converter = time.gmtime

    def __init__(self, context_attrs=('process', 'threadName')):
        super().__init__(
            '{asctime}.{msecs:03.0f} {levelname} {name} {message}',
            '%Y-%m-%dT%H:%M:%S',
            style='{',
        )
        self._context_attrs = context_attrs

    def format(self, record):
        line = super().format(record).replace('\n', '\\n')
        context = {
            attr: getattr(record, attr) for attr in self._context_attrs
            if getattr(record, attr, None) is not None
        }
        return f'{line} {json.dumps(context)}'
