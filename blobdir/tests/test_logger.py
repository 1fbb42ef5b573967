import blobdir.logger as logger


def test_summarize_matching_length():
    assert logger.summarize("abc", max_length=3) == "abc"


def test_summarize_exceeding_length():
    assert logger.summarize("abcdef", max_length=5) == "ab..."


def test_summarize_bytes():
    assert logger.summarize(b"\x00\x01", max_length=255) == "b'\\x00\\x01'"


def test_logger_name():
    assert logger.log.name == "blobdir"
