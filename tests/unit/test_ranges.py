"""Tests for HTTP byte range parsing"""

from streamvault.core.ranges import ByteRange, parse_range_header


class TestParseRangeHeader:
    """Tests for parse_range_header"""

    def test_absent_header(self) -> None:
        assert parse_range_header(None, 100) is None
        assert parse_range_header("", 100) is None

    def test_closed_range(self) -> None:
        result = parse_range_header("bytes=0-1023", 2048)
        assert result == ByteRange(start=0, end=1023, total=2048)
        assert result.length == 1024
        assert result.content_range() == "bytes 0-1023/2048"

    def test_open_ended_range(self) -> None:
        result = parse_range_header("bytes=100-", 1000)
        assert result is not None
        assert (result.start, result.end) == (100, 999)

    def test_suffix_range(self) -> None:
        result = parse_range_header("bytes=-100", 1000)
        assert result is not None
        assert (result.start, result.end) == (900, 999)

    def test_suffix_longer_than_resource(self) -> None:
        result = parse_range_header("bytes=-5000", 1000)
        assert result is not None
        assert (result.start, result.end) == (0, 999)

    def test_end_clamped_to_size(self) -> None:
        result = parse_range_header("bytes=500-99999", 1000)
        assert result is not None
        assert result.end == 999
        assert result.length == 500

    def test_start_beyond_size(self) -> None:
        assert parse_range_header("bytes=1000-", 1000) is None

    def test_inverted_range(self) -> None:
        assert parse_range_header("bytes=50-10", 1000) is None

    def test_malformed_headers(self) -> None:
        assert parse_range_header("bytes=abc", 1000) is None
        assert parse_range_header("items=0-10", 1000) is None
        assert parse_range_header("bytes=-", 1000) is None
        assert parse_range_header("bytes=-0", 1000) is None

    def test_multi_range_not_supported(self) -> None:
        assert parse_range_header("bytes=0-10,20-30", 1000) is None

    def test_case_and_whitespace_tolerated(self) -> None:
        result = parse_range_header(" Bytes = 10 - 19 ", 100)
        assert result is not None
        assert (result.start, result.end) == (10, 19)

    def test_empty_resource(self) -> None:
        assert parse_range_header("bytes=0-", 0) is None
