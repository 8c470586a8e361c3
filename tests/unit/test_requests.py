"""
Tests for Operation Request Models
"""

import pytest

from crypto.credentials import Credential
from txbuilder.exceptions import MalformedRequestError
from txbuilder.ledger import OutRef
from txbuilder.requests import (
    BlacklistInitRequest,
    BlacklistRequest,
    BurnRequest,
    RegisterRequest,
    TransferRequest,
    parse_request,
)

from tests.conftest import ASSET_NAME, h28, owner, wallet


def register_data(**overrides):
    data = {
        "substandard_id": "dummy",
        "owner_credential": str(owner("issuer")),
        "asset_name": ASSET_NAME.hex(),
        "quantity": 10,
        "fee_payer": wallet("issuer"),
    }
    data.update(overrides)
    return data


class TestRegisterRequest:
    """Test registration requests."""

    def test_valid(self):
        request = parse_request(RegisterRequest, register_data())

        assert request.owner == owner("issuer")
        assert request.asset_name_bytes == ASSET_NAME
        assert request.recipient_address == wallet("issuer")

    def test_credential_normalized(self):
        request = parse_request(RegisterRequest, register_data(owner_credential=f"key:{h28('x').hex().upper()}"))
        assert request.owner_credential == f"key:{h28('x').hex()}"

    @pytest.mark.parametrize("field,value", [
        ("quantity", 0),
        ("asset_name", "xyz"),
        ("asset_name", "00" * 33),
        ("owner_credential", "wallet:abcd"),
        ("fee_payer", "not-an-address"),
    ])
    def test_invalid_fields(self, field, value):
        with pytest.raises(MalformedRequestError) as exc_info:
            parse_request(RegisterRequest, register_data(**{field: value}))
        assert field in exc_info.value.reason

    def test_missing_field(self):
        data = register_data()
        del data["fee_payer"]
        with pytest.raises(MalformedRequestError):
            parse_request(RegisterRequest, data)


class TestOtherRequests:
    """Test transfer, burn and denylist requests."""

    def test_transfer_unit_split(self):
        request = TransferRequest(
            sender=wallet("alice"),
            unit=(h28("policy") + ASSET_NAME).hex().upper(),
            quantity=1,
            recipient=wallet("bob"),
        )
        assert request.policy == h28("policy")
        assert request.asset_name_bytes == ASSET_NAME
        assert request.unit == (h28("policy") + ASSET_NAME).hex()

    def test_transfer_short_unit(self):
        with pytest.raises(MalformedRequestError):
            parse_request(TransferRequest, {"sender": wallet("alice"), "unit": "abcd",
                                            "quantity": 1, "recipient": wallet("bob")})

    def test_burn_target_ref(self):
        request = BurnRequest(
            policy_id=h28("policy").hex(),
            asset_name=ASSET_NAME.hex(),
            quantity=1,
            target_record_ref="AB" * 32 + "#1",
            fee_payer=wallet("issuer"),
        )
        assert request.target_ref == OutRef(b"\xab" * 32, 1)

    def test_burn_invalid_policy(self):
        with pytest.raises(MalformedRequestError):
            parse_request(BurnRequest, {"policy_id": "abcd", "asset_name": "", "quantity": 1,
                                        "target_record_ref": "ab" * 32 + "#1", "fee_payer": wallet("issuer")})

    def test_blacklist_requests(self):
        init = BlacklistInitRequest(admin_credential=f"key:{h28('m').hex()}", fee_payer=wallet("manager"))
        assert init.admin == Credential.key(h28("m"))

        request = BlacklistRequest(
            policy_id=h28("policy").hex(),
            target_credential=str(owner("alice")),
            admin_credential=f"key:{h28('m').hex()}",
            fee_payer=wallet("manager"),
        )
        assert request.target == owner("alice")
        assert request.policy == h28("policy")
