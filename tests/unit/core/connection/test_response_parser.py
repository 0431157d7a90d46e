"""Tests for XL2 response classification and target-bin lookup."""

import pytest

from xl2_logger.core.connection.response_parser import ResponseKind, find_target_bin, parse_response

from tests.infrastructure.mocks.serial_mocks import (
    GPGGA,
    XL2_IDN,
    frequency_table_line,
    spectrum_line,
)


class TestParseResponse:
    """Shape-based classification in fixed order."""

    def test_identification(self):
        assert parse_response(XL2_IDN).kind is ResponseKind.IDENTIFICATION

    def test_frequency_table(self):
        freqs = [12.5, 12.6, 12.7, 12.8, 12.9, 13.0, 13.1, 13.2, 13.3, 13.4, 13.5]
        response = parse_response(frequency_table_line(freqs))
        assert response.kind is ResponseKind.FREQUENCY_TABLE
        assert response.values == tuple(freqs)

    def test_spectrum(self):
        levels = [-40.5 - i for i in range(11)]
        response = parse_response(spectrum_line(levels))
        assert response.kind is ResponseKind.SPECTRUM
        assert response.values == tuple(levels)

    def test_spectrum_without_units(self):
        response = parse_response(",".join(str(v) for v in range(11)))
        assert response.kind is ResponseKind.SPECTRUM
        assert len(response.values) == 11

    def test_ten_fields_is_not_a_list(self):
        assert parse_response(",".join(["1"] * 10)).kind is ResponseKind.UNKNOWN

    def test_unparseable_fields_dropped(self):
        response = parse_response("1,2,x,4,5,6,7,8,9,10,11")
        assert response.values == (1.0, 2.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0, 11.0)

    def test_single_value(self):
        response = parse_response("-45.3 dB,OK")
        assert response.kind is ResponseKind.SINGLE_VALUE
        assert response.value == -45.3
        assert response.status == "OK"

    def test_single_value_unknown_status(self):
        response = parse_response("62.0dB")
        assert response.value == 62.0
        assert response.status == "UNKNOWN"

    def test_unknown(self):
        assert parse_response("garbage").kind is ResponseKind.UNKNOWN
        assert parse_response("dB").kind is ResponseKind.UNKNOWN

    def test_long_nmea_is_misread_as_spectrum(self):
        """Known limitation: field count alone decides list-ness."""
        assert parse_response(GPGGA).kind is ResponseKind.SPECTRUM


class TestFindTargetBin:
    def test_first_bin_within_tolerance(self):
        assert find_target_bin([12.5, 12.6, 12.7], 12.5, 0.1) == (0, 12.5)
        assert find_target_bin([12.45, 12.5], 12.5, 0.1) == (0, 12.45)

    def test_first_bin_outside_tolerance_still_nearest(self):
        assert find_target_bin([12.5, 25.0, 37.5], 12.5, 0.1) == (0, 12.5)
        assert find_target_bin([12.7, 25.0, 37.5], 12.5, 0.1) == (0, 12.7)

    def test_nearest_bin(self):
        assert find_target_bin([10.0, 12.4, 12.52, 13.0], 12.5, 0.1) == (2, 12.52)

    def test_tie_goes_to_lowest_index(self):
        assert find_target_bin([20.0, 5.0, 30.0], 12.5, 0.1) == (0, 20.0)
        assert find_target_bin([20.0, 11.0, 30.0], 12.5, 0.1) == (1, 11.0)

    def test_empty_table(self):
        with pytest.raises(ValueError):
            find_target_bin([], 12.5, 0.1)
