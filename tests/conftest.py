import logging
import os
import re

from pathlib import Path

import pytest

from fdhandoff._internal._logging import SingleLineFormatter


log_dir = Path(__file__).parent.parent / 'logs'


logger = logging.getLogger(__name__)


_name_re = re.compile(r'(?P<file>.+?)::(?P<name>.+?) \(.*\)$')


def current_test_name():
    try:
        name = os.environ['PYTEST_CURRENT_TEST']
    except KeyError:
        return '<outside test>'
    m = _name_re.match(name)
    if not m:
        raise RuntimeError(f'Could not extract test name from {name}')
    return m.group('name')


def get_log_file(test_name=None):
    if not test_name:
        test_name = current_test_name()
    return log_dir / f'{test_name}.log'


@pytest.fixture
def log_file_path():
    return get_log_file()


_last_handler = None


def pytest_runtest_setup(item):
    """Write the logs of each test to its own file."""
    global _last_handler
    path = get_log_file(item.name)
    path.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger('')
    root_logger.setLevel(logging.DEBUG)

    formatter = SingleLineFormatter()
    handler = logging.FileHandler(path, encoding='utf-8')
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    if _last_handler:
        root_logger.removeHandler(_last_handler)
        _last_handler.close()
    _last_handler = handler

    logger.info('---------- Starting test ----------')
