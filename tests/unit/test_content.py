import pytest

from platform_nfs_api.content import ByteRange, RangeSpec, parse_range, resolve_range
from platform_nfs_api.errors import InvalidRangeError, RangeNotSatisfiableError


class TestParseRange:
    def test_no_header(self) -> None:
        assert parse_range(None) is None

    def test_closed(self) -> None:
        assert parse_range("bytes=0-4") == RangeSpec(0, 4, "bytes=0-4")

    def test_open_ended(self) -> None:
        assert parse_range("bytes=5-") == RangeSpec(5, None, "bytes=5-")

    def test_suffix(self) -> None:
        assert parse_range("bytes=-3") == RangeSpec(None, 3, "bytes=-3")

    @pytest.mark.parametrize(
        "value",
        ["", "data=", "data=0-1", "bytes=", "bytes=-", "bytes=a-b", "bytes=5-1"],
    )
    def test_invalid(self, value: str) -> None:
        with pytest.raises(InvalidRangeError, match="range"):
            parse_range(value)


class TestResolveRange:
    def test_whole_file(self) -> None:
        rng = resolve_range(None, 17)
        assert rng == ByteRange(start=0, end=16, total=17)
        assert rng.length == 17
        assert rng.content_range == "bytes 0-16/17"
        assert not rng.partial

    def test_empty_file(self) -> None:
        rng = resolve_range(None, 0)
        assert rng.length == 0
        assert rng.content_range == "bytes */0"

    def test_closed(self) -> None:
        rng = resolve_range(RangeSpec(2, 5), 17)
        assert rng == ByteRange(start=2, end=5, total=17, partial=True)
        assert rng.length == 4
        assert rng.content_range == "bytes 2-5/17"

    def test_end_is_clamped(self) -> None:
        rng = resolve_range(RangeSpec(10, 1000), 17)
        assert (rng.start, rng.end, rng.length) == (10, 16, 7)

    def test_open_ended(self) -> None:
        rng = resolve_range(RangeSpec(10, None), 17)
        assert (rng.start, rng.end) == (10, 16)

    def test_suffix(self) -> None:
        rng = resolve_range(RangeSpec(None, 3), 17)
        assert (rng.start, rng.end) == (14, 16)

    def test_suffix_longer_than_file(self) -> None:
        rng = resolve_range(RangeSpec(None, 100), 17)
        assert (rng.start, rng.end) == (0, 16)

    def test_start_past_end(self) -> None:
        with pytest.raises(RangeNotSatisfiableError) as exc_info:
            resolve_range(RangeSpec(17, None, "bytes=17-"), 17)
        assert exc_info.value.status == 416
        assert exc_info.value.headers == {"Content-Range": "bytes */17"}

    def test_suffix_of_empty_file(self) -> None:
        with pytest.raises(RangeNotSatisfiableError):
            resolve_range(RangeSpec(None, 3), 0)


class TestRangeSpec:
    def test_requires_an_end(self) -> None:
        with pytest.raises(ValueError):
            RangeSpec(None, None)
