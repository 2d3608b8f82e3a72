"""
Unit tests for handle layout, type tags and address helpers.
"""

import pytest
from eth_utils import to_checksum_address

from fhevmclient.core.handles import (FheType, build_handle, handle_chain_id, handle_index, handle_type,
                                      normalize_address, normalize_addresses, normalize_handle,
                                      to_cleartext, to_hex)


class TestHandleLayout:

    def test_metadata_round_trips_through_layout(self):
        handle = build_handle(b"\x01" * 32, 3, 11155111, FheType.EUINT64)
        assert len(handle) == 32
        assert handle_index(handle) == 3
        assert handle_chain_id(handle) == 11155111
        assert handle_type(handle) is FheType.EUINT64
        assert handle[31] == 0

    def test_prefix_must_be_long_enough(self):
        with pytest.raises(ValueError):
            build_handle(b"\x01" * 20, 0, 1, FheType.EBOOL)

    def test_unknown_type_tag(self):
        raw = bytearray(build_handle(b"\x00" * 21, 0, 1, FheType.EUINT8))
        raw[30] = 1
        with pytest.raises(ValueError, match="Unknown type tag"):
            handle_type(bytes(raw))

    def test_normalize_handle(self):
        handle = build_handle(b"\xab" * 21, 0, 1, FheType.EUINT8)
        upper = "0X" + handle.hex().upper()
        assert normalize_handle(upper) == to_hex(handle)
        with pytest.raises(ValueError):
            normalize_handle("0x1234")


class TestCleartext:

    def test_bool_tag_maps_to_bool(self):
        handle = build_handle(b"\x00" * 21, 0, 1, FheType.EBOOL)
        assert to_cleartext(handle, 1) is True
        assert to_cleartext(handle, 0) is False

    def test_integer_tags_map_to_int(self):
        handle = build_handle(b"\x00" * 21, 0, 1, FheType.EUINT32)
        assert to_cleartext(handle, 5) == 5

    def test_address_tag_maps_to_checksum_address(self):
        handle = build_handle(b"\x00" * 21, 0, 1, FheType.EADDRESS)
        value = int("aa" * 20, 16)
        assert to_cleartext(handle, value) == to_checksum_address("0x" + "aa" * 20)

    def test_type_widths(self):
        assert FheType.EBOOL.max_value == 1
        assert FheType.EUINT8.max_value == 255
        assert FheType.EADDRESS.bits == 160


class TestAddresses:

    def test_normalize_addresses_sorts_and_dedupes(self):
        a = "0x" + "AA" * 20
        b = "0x" + "11" * 20
        assert normalize_addresses([a, b, a.lower()]) == ("0x" + "11" * 20, "0x" + "aa" * 20)

    def test_invalid_address(self):
        with pytest.raises(ValueError):
            normalize_address("0x1234")
