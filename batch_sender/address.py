# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
EVM address parsing and validation.

Addresses are 20-byte values written as ``0x`` followed by 40 hex characters.
Mixed-case strings must carry a valid EIP-55 checksum; all-lowercase and
all-uppercase strings are accepted as unchecksummed forms. Parsed addresses
always render in checksummed form.

Examples:
    Strict and relaxed parsing::

        from batch_sender.address import EvmAddress

        addr = EvmAddress.from_str("0x52908400098527886E0F7030069857D2E4169EE7")
        str(addr)  # checksummed

        EvmAddress.from_str_relaxed("52908400098527886e0f7030069857d2e4169ee7")

    Validation without raising::

        EvmAddressValidator().is_valid_address("0x123")  # False
"""

from __future__ import annotations

import unittest

from eth_utils import is_checksum_address, to_checksum_address


class ParseAddressError(Exception):
    """The string is not a well-formed EVM address."""


class EvmAddress:
    """A 20-byte EVM account address."""

    address: bytes
    LENGTH: int = 20

    def __init__(self, address: bytes):
        self.address = address

        if len(address) != EvmAddress.LENGTH:
            raise ParseAddressError("Expected address of length 20")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EvmAddress):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __str__(self):
        return to_checksum_address("0x" + self.address.hex())

    def __repr__(self):
        return self.__str__()

    @staticmethod
    def from_str(address: str) -> EvmAddress:
        """Parse a ``0x``-prefixed address, enforcing EIP-55 on mixed case.

        Raises:
            ParseAddressError: If the prefix is missing, the length is wrong, the
                string is not hex, or a mixed-case checksum does not match.
        """
        if not address.startswith("0x"):
            raise ParseAddressError("Hex string must start with a leading 0x.")
        body = address[2:]
        if len(body) != EvmAddress.LENGTH * 2:
            raise ParseAddressError(
                f"Hex string must be {EvmAddress.LENGTH * 2} characters, got {len(body)}."
            )
        try:
            raw = bytes.fromhex(body)
        except ValueError:
            raise ParseAddressError(f"Not a hex string: {address}") from None
        if body != body.lower() and body != body.upper():
            if not is_checksum_address(address):
                raise ParseAddressError(f"Invalid EIP-55 checksum: {address}")
        return EvmAddress(raw)

    @staticmethod
    def from_str_relaxed(address: str) -> EvmAddress:
        """Like ``from_str`` but the ``0x`` prefix is optional."""
        address = address.strip()
        if not address.startswith("0x"):
            address = f"0x{address}"
        return EvmAddress.from_str(address)


class EvmAddressValidator:
    """Address validator for EVM networks, usable by the batch coordinator."""

    def is_valid_address(self, address: str) -> bool:
        if not isinstance(address, str):
            return False
        try:
            EvmAddress.from_str(address)
        except ParseAddressError:
            return False
        return True


class Test(unittest.TestCase):
    CHECKSUMMED = "0x52908400098527886E0F7030069857D2E4169EE7"
    LOWER = "0x52908400098527886e0f7030069857d2e4169ee7"
    BAD_CHECKSUM = "0x52908400098527886E0F7030069857D2E4169Ee7"

    def test_from_str(self):
        self.assertEqual(str(EvmAddress.from_str(self.CHECKSUMMED)), self.CHECKSUMMED)
        self.assertEqual(str(EvmAddress.from_str(self.LOWER)), self.CHECKSUMMED)
        self.assertEqual(
            EvmAddress.from_str(self.LOWER), EvmAddress.from_str(self.CHECKSUMMED)
        )

    def test_from_str_rejects(self):
        self.assertRaises(ParseAddressError, EvmAddress.from_str, self.LOWER[2:])
        self.assertRaises(ParseAddressError, EvmAddress.from_str, "0x1234")
        self.assertRaises(ParseAddressError, EvmAddress.from_str, "0x" + "zz" * 20)
        self.assertRaises(ParseAddressError, EvmAddress.from_str, self.BAD_CHECKSUM)

    def test_from_str_relaxed(self):
        self.assertEqual(
            str(EvmAddress.from_str_relaxed(self.LOWER[2:])), self.CHECKSUMMED
        )
        self.assertEqual(
            str(EvmAddress.from_str_relaxed(f" {self.CHECKSUMMED} ")),
            self.CHECKSUMMED,
        )

    def test_wrong_length_bytes(self):
        self.assertRaises(ParseAddressError, EvmAddress, b"\x00" * 32)

    def test_validator(self):
        validator = EvmAddressValidator()
        self.assertTrue(validator.is_valid_address(self.CHECKSUMMED))
        self.assertTrue(validator.is_valid_address(self.LOWER))
        self.assertFalse(validator.is_valid_address(self.BAD_CHECKSUM))
        self.assertFalse(validator.is_valid_address(self.LOWER[2:]))
        self.assertFalse(validator.is_valid_address("0x1234"))
        self.assertFalse(validator.is_valid_address(""))
