"""Package speed normalization."""
import pytest

from linkledger.utils.speed import BandwidthLimits, normalize_speed, parse_speed


class TestParseSpeed:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("10Mbps", (5_000, 10_000)),
            ("512 kbps", (256, 512)),
            ("1G", (500_000, 1_000_000)),
            ("20", (10_000, 20_000)),
            ("2.5M", (1_250, 2_500)),
            ("10 Mbit/s", (5_000, 10_000)),
            ("1k", (1, 1)),
        ],
    )
    def test_single_value_is_download_with_half_upload(self, text, expected):
        limits = parse_speed(text)
        assert (limits.upload_kbps, limits.download_kbps) == expected
        assert limits.fallback is False

    def test_pair_is_upload_then_download(self):
        limits = parse_speed("5M/10M")
        assert limits.upload_kbps == 5_000
        assert limits.download_kbps == 10_000

    def test_unitless_part_inherits_the_other_unit(self):
        limits = parse_speed("512/1024k")
        assert (limits.upload_kbps, limits.download_kbps) == (512, 1024)

    @pytest.mark.parametrize("text", [None, "", "fast", "0", "1/2/3", "-5M", "10 Tbps"])
    def test_unparseable_returns_none(self, text):
        assert parse_speed(text) is None


class TestNormalizeSpeed:
    def test_valid_speed_is_not_flagged(self):
        assert normalize_speed("20M", "10Mbps") == BandwidthLimits(10_000, 20_000)

    def test_garbage_falls_back_to_default_never_zero(self):
        limits = normalize_speed("unlimited!!", "10Mbps")
        assert limits.fallback is True
        assert (limits.upload_kbps, limits.download_kbps) == (5_000, 10_000)

    def test_invalid_default_is_a_configuration_error(self):
        with pytest.raises(ValueError):
            normalize_speed("garbage", "also garbage")

    def test_max_limit_string(self):
        assert BandwidthLimits(5_000, 10_000).to_max_limit() == "5000k/10000k"
        assert BandwidthLimits(1, 2).download_bps == 2_000
