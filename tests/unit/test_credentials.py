"""
Tests for Credentials and Addresses

Tests credential parsing, ordering and Plutus encoding, and custody
address derivation.
"""

import pytest
from cbor2 import CBORTag

from crypto.addresses import (
    decompose_address,
    is_custody_address,
    owner_credential_of,
    programmable_address,
    wallet_address,
)
from crypto.credentials import (
    Credential,
    CredentialKind,
    ScriptInvocation,
    Signature,
    authorization_requirement,
    blake2b_224,
    script_hash,
)
from crypto.exceptions import AddressError, InvalidCredentialError
from txbuilder.exceptions import MalformedRequestError

from tests.conftest import h28


class TestCredential:
    """Test the Credential model."""

    def test_key_and_script_constructors(self):
        """Test the kind-specific constructors."""
        key = Credential.key(h28("k"))
        script = Credential.script(h28("s").hex())

        assert key.kind == CredentialKind.KEY
        assert not key.is_script
        assert script.is_script
        assert script.hash == h28("s")

    def test_invalid_length_rejected(self):
        """Hashes must be exactly 28 bytes."""
        with pytest.raises(InvalidCredentialError):
            Credential.key(b"\x01" * 27)

    def test_invalid_kind_rejected(self):
        with pytest.raises(InvalidCredentialError):
            Credential(h28("k"), "wallet")

    def test_errors_are_malformed_requests(self):
        """Credential errors surface with the malformed request taxonomy."""
        with pytest.raises(MalformedRequestError):
            Credential.parse("key:zz")

    def test_parse_forms(self):
        """Test every accepted textual and mapping form."""
        hex_hash = h28("p").hex()

        assert Credential.parse(f"key:{hex_hash}") == Credential.key(hex_hash)
        assert Credential.parse(f"script:{hex_hash}") == Credential.script(hex_hash)
        assert Credential.parse(hex_hash) == Credential.key(hex_hash)
        assert Credential.parse({"kind": "script", "hash": hex_hash}).is_script

        existing = Credential.key(hex_hash)
        assert Credential.parse(existing) is existing

    def test_str_round_trips_through_parse(self):
        credential = Credential.script(h28("x"))
        assert Credential.parse(str(credential)) == credential

    def test_ordering_by_hash(self):
        """Credentials sort by hash bytes, like sorted-list keys."""
        low = Credential.key(b"\x00" * 28)
        high = Credential.script(b"\xff" * 28)
        assert sorted([high, low]) == [low, high]

    def test_plutus_encoding(self):
        """Keys encode as constructor 0, scripts as constructor 1."""
        key = Credential.key(h28("k"))
        script = Credential.script(h28("s"))

        assert key.to_plutus() == CBORTag(121, [h28("k")])
        assert script.to_plutus() == CBORTag(122, [h28("s")])
        assert Credential.from_plutus(script.to_plutus()) == script

    def test_from_plutus_rejects_other_data(self):
        with pytest.raises(InvalidCredentialError):
            Credential.from_plutus(CBORTag(123, [h28("k")]))

    def test_authorization_requirement(self):
        """Keys need a signature, scripts need an invocation."""
        assert authorization_requirement(Credential.key(h28("k"))) == Signature(h28("k"))
        assert authorization_requirement(Credential.script(h28("s"))) == ScriptInvocation(h28("s"))


class TestHashing:
    """Test hash helpers."""

    def test_blake2b_224_size(self):
        assert len(blake2b_224(b"data")) == 28

    def test_script_hash_uses_language_prefix(self):
        assert script_hash(b"code") == blake2b_224(b"\x03code")
        assert script_hash(b"code", prefix=b"\x02") != script_hash(b"code")


class TestAddresses:
    """Test custody address derivation."""

    def test_programmable_address_carries_owner(self):
        """The custody script is the payment part; the owner is the staking part."""
        custody = h28("custody")
        owner = Credential.key(h28("alice"))

        address = programmable_address(custody, owner, "testnet")
        payment, staking = decompose_address(address)

        assert payment == Credential.script(custody)
        assert staking == owner
        assert owner_credential_of(address) == owner

    def test_owners_get_distinct_addresses(self):
        custody = h28("custody")
        a = programmable_address(custody, Credential.key(h28("a")))
        b = programmable_address(custody, Credential.key(h28("b")))
        assert a != b

    def test_is_custody_address(self):
        custody = h28("custody")
        owner = Credential.key(h28("alice"))

        assert is_custody_address(programmable_address(custody, owner), custody)
        assert not is_custody_address(programmable_address(h28("other"), owner), custody)
        assert not is_custody_address(wallet_address(owner, owner), custody)
        assert not is_custody_address("not-an-address", custody)

    def test_owner_of_enterprise_address_rejected(self):
        """Addresses without a staking part have no owner credential."""
        address = wallet_address(Credential.key(h28("alice")), None)
        with pytest.raises(AddressError):
            owner_credential_of(address)

    def test_decompose_invalid_address(self):
        with pytest.raises(AddressError):
            decompose_address("addr_test1invalid")

    def test_unknown_network(self):
        with pytest.raises(AddressError):
            wallet_address(Credential.key(h28("alice")), None, "moonnet")
