"""Validation tests for request schemas."""

import pytest
from pydantic import ValidationError

from tracker.schemas.notification_email import NotificationEmailBulk, NotificationEmailCreate
from tracker.schemas.settings import RefreshSettings
from tracker.schemas.wallet_address import WalletAddressCreate, WalletAddressUpdate

VALID = "0x" + "AbCdEf0123" * 4


class TestWalletAddressCreate:
    def test_valid_address_lowercased(self):
        schema = WalletAddressCreate(address=f"  {VALID} ", alias="  whale ")
        assert schema.address == VALID.lower()
        assert schema.alias == "whale"
        assert schema.notifications_enabled is True

    @pytest.mark.parametrize("bad", ["", "0x123", VALID[2:], "0x" + "g" * 40, VALID + "0"])
    def test_invalid_address_rejected(self, bad):
        with pytest.raises(ValidationError):
            WalletAddressCreate(address=bad)

    def test_blank_alias_becomes_none(self):
        assert WalletAddressCreate(address=VALID, alias="   ").alias is None

    def test_color_must_be_hex(self):
        assert WalletAddressCreate(address=VALID, color="#10b981").color == "#10b981"
        with pytest.raises(ValidationError):
            WalletAddressCreate(address=VALID, color="red")


def test_update_schema_partial():
    schema = WalletAddressUpdate(notifications_enabled=False)
    assert schema.model_dump(exclude_unset=True) == {"notifications_enabled": False}


class TestEmails:
    def test_single_email_normalized(self):
        assert NotificationEmailCreate(email=" Ops@Example.com ").email == "ops@example.com"

    @pytest.mark.parametrize("bad", ["", "ops", "ops@example", "ops @example.com", "@example.com"])
    def test_invalid_email_rejected(self, bad):
        with pytest.raises(ValidationError):
            NotificationEmailCreate(email=bad)

    def test_bulk_splits_on_separators(self):
        bulk = NotificationEmailBulk(emails="a@x.io, b@x.io;c@x.io\nd@x.io\n\nA@x.io")
        assert bulk.emails == ["a@x.io", "b@x.io", "c@x.io", "d@x.io"]

    def test_bulk_accepts_list(self):
        assert NotificationEmailBulk(emails=["a@x.io", " b@x.io "]).emails == ["a@x.io", "b@x.io"]

    def test_bulk_rejected_whole_on_one_bad_entry(self):
        with pytest.raises(ValidationError) as exc:
            NotificationEmailBulk(emails="a@x.io, not-an-email, b@x.io")
        assert "not-an-email" in str(exc.value)

    def test_bulk_empty_rejected(self):
        with pytest.raises(ValidationError):
            NotificationEmailBulk(emails=" ,; \n")


class TestRefreshSettings:
    @pytest.mark.parametrize("seconds", [30, 60, 300])
    def test_allowed(self, seconds):
        assert RefreshSettings(refresh_interval_seconds=seconds).refresh_interval_seconds == seconds

    def test_other_values_rejected(self):
        with pytest.raises(ValidationError):
            RefreshSettings(refresh_interval_seconds=45)


def test_update_schema_rejects_null_notifications():
    with pytest.raises(ValidationError):
        WalletAddressUpdate(notifications_enabled=None)
    assert WalletAddressUpdate(alias="x").model_dump(exclude_unset=True) == {"alias": "x"}
