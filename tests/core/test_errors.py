# tests/core/test_errors.py
import errno

import pytest

from contextchat.core.errors import NotFound, PermissionDenied, ReadFailure, map_os_error


@pytest.mark.parametrize("error,expected", [
    (PermissionError(errno.EACCES, "Permission denied"), PermissionDenied),
    (FileNotFoundError(errno.ENOENT, "No such file or directory"), NotFound),
    (NotADirectoryError(errno.ENOTDIR, "Not a directory"), NotFound),
    (OSError(errno.EIO, "Input/output error"), ReadFailure),
])
def test_map_os_error(error, expected):
    mapped = map_os_error("/data/file.txt", error)
    assert type(mapped) is expected
    assert mapped.path == "/data/file.txt"
    assert "/data/file.txt" in mapped.user_message


def test_other_os_error_keeps_its_cause():
    assert map_os_error("/x", OSError(errno.EIO, "Input/output error")).user_message == "Failed to read: /x (Input/output error)"
    assert map_os_error("/x", OSError("device gone")).user_message == "Failed to read: /x (device gone)"
