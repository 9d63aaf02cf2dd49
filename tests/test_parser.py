"""Tests for the portal page parsers."""

import json

import pytest

from selfcare.errors import ParseMiss
from selfcare.models import PLACEHOLDER, UNKNOWN_NAME, LiveSpeedSample
from selfcare.parser import (
    extract_live_speed,
    normalize_connection_status,
    parse_dashboard,
    parse_live_speed,
    parse_payment_history,
    parse_usage_history,
)

# -- Sample HTML --

SIBLING_HTML = """
<html><body>
<div class="row"><label>Expiry Date</label><div>01 Jan 2025</div></div>
<div class="row"><label>Connection Status</label><div>Offline since 10:00</div></div>
</body></html>
"""


# -- Dashboard --

class TestDashboard:
    @pytest.fixture
    def snapshot(self, dashboard_html):
        return parse_dashboard(dashboard_html)

    def test_name_is_own_heading_text(self, snapshot):
        assert snapshot.name == "Rahim Uddin"

    def test_package(self, snapshot):
        assert snapshot.package == "Home 20 Mbps"

    def test_account_status(self, snapshot):
        assert snapshot.account_status == "Active"

    def test_connection_status_normalized(self, snapshot):
        assert snapshot.connection_status == "ONLINE"
        assert snapshot.is_online is True

    def test_expiry_date(self, snapshot):
        assert snapshot.expiry_date == "25 Nov 2024"

    def test_plan_rate(self, snapshot):
        assert snapshot.plan_rate == "1,050.00 BDT"

    def test_empty_page_uses_placeholders(self):
        snapshot = parse_dashboard("")
        assert snapshot.name == UNKNOWN_NAME
        assert snapshot.package == PLACEHOLDER
        assert snapshot.account_status == PLACEHOLDER
        assert snapshot.connection_status == PLACEHOLDER
        assert snapshot.expiry_date == PLACEHOLDER
        assert snapshot.plan_rate == PLACEHOLDER
        assert snapshot.is_online is False

    def test_missing_field_does_not_affect_others(self, dashboard_html):
        html = dashboard_html.replace(
            '<div class="card"><span class="text-sm">Plan rate</span><p>1,050.00 BDT</p></div>', ""
        )
        snapshot = parse_dashboard(html)
        assert snapshot.plan_rate == PLACEHOLDER
        assert snapshot.expiry_date == "25 Nov 2024"

    def test_value_from_next_sibling(self):
        snapshot = parse_dashboard(SIBLING_HTML)
        assert snapshot.expiry_date == "01 Jan 2025"
        assert snapshot.connection_status == "OFFLINE"

    def test_name_falls_back_to_plain_heading(self):
        snapshot = parse_dashboard("<aside><h2>Karim</h2></aside>")
        assert snapshot.name == "Karim"

    def test_name_ignores_comments(self):
        html = '<aside><h2 class="flex items-center"><!-- avatar --><i></i>Rahim</h2></aside>'
        assert parse_dashboard(html).name == "Rahim"

    def test_to_dict(self, snapshot):
        d = snapshot.to_dict()
        assert d["name"] == "Rahim Uddin"
        assert set(d) == {
            "name", "package", "account_status",
            "connection_status", "expiry_date", "plan_rate",
        }


class TestConnectionStatus:
    @pytest.mark.parametrize("raw,expected", [
        ("online", "ONLINE"),
        ("● Online now", "ONLINE"),
        ("OFFLINE", "OFFLINE"),
        ("offline (expired)", "OFFLINE"),
        ("Suspended", "Suspended"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_connection_status(raw) == expected


# -- Payments --

class TestPaymentHistory:
    @pytest.fixture
    def records(self, payments_html):
        return parse_payment_history(payments_html)

    def test_short_rows_skipped(self, records):
        assert len(records) == 2

    def test_five_cell_row(self, records):
        r = records[0]
        assert r.date == "2024-10-01"
        assert r.amount == "৳ 1,050.00"
        assert r.method == "bKash"
        assert r.status == "Paid"
        assert r.transaction_id == "TX9A8B7C"

    def test_four_cell_row_has_empty_transaction_id(self, records):
        r = records[1]
        assert r.amount == "1,050.00"
        assert r.transaction_id == ""

    def test_no_table(self):
        assert parse_payment_history("<html><body><p>No payments</p></body></html>") == []

    def test_empty_body(self):
        assert parse_payment_history("") == []


# -- Usage --

class TestUsageHistory:
    def test_double_encoded_elements(self):
        payload = {"value": [
            json.dumps({"date": "2024-10-01", "download": 1048576, "upload": 2048}),
            json.dumps({"date": "2024-10-02", "download": "4096", "upload": 0}),
        ]}
        entries = parse_usage_history(payload)
        assert len(entries) == 2
        assert entries[0].date == "2024-10-01"
        assert entries[0].download == 1048576
        assert entries[0].upload == 2048
        assert entries[1].download == 4096

    def test_plain_objects_accepted(self):
        entries = parse_usage_history({"value": [{"date": "2024-10-01", "download": 1, "upload": 2}]})
        assert entries[0].to_dict() == {"date": "2024-10-01", "download": 1, "upload": 2}

    def test_empty_list(self):
        assert parse_usage_history({"value": []}) == []

    @pytest.mark.parametrize("payload", [
        None,
        [],
        {},
        {"value": "nope"},
        {"value": ["{not json"]},
        {"value": [json.dumps([1, 2])]},
        {"value": [json.dumps({"date": "2024-10-01", "download": 1})]},
        {"value": [json.dumps({"date": "2024-10-01", "download": "x", "upload": 1})]},
        {"value": [json.dumps({"date": "2024-10-01", "download": -5, "upload": 1})]},
        {"value": [json.dumps({"date": "2024-10-01", "download": True, "upload": 1})]},
        {"value": ['{"date": "2024-10-01", "download": 1e400, "upload": 50}']},
        {"value": ['{"date": "2024-10-01", "download": 5, "upload": Infinity}']},
        {"value": ['{"date": "2024-10-01", "download": NaN, "upload": 5}']},
    ])
    def test_bad_shapes_raise(self, payload):
        with pytest.raises(ParseMiss):
            parse_usage_history(payload)


# -- Live speed --

class TestLiveSpeed:
    def test_single_pair(self):
        sample, end = extract_live_speed("5000,2000")
        assert sample == LiveSpeedSample(5.0, 2.0)
        assert end == len("5000,2000")

    def test_last_of_glued_pairs(self):
        sample, _ = extract_live_speed("12.0,34.0987.0,1.5")
        assert sample.download == pytest.approx(0.987)
        assert sample.upload == pytest.approx(0.0015)

    def test_glued_pairs_with_larger_values(self):
        sample, end = extract_live_speed("1234.0,5678.0900.0,100.0")
        assert sample.download == pytest.approx(0.9)
        assert sample.upload == pytest.approx(0.1)
        assert end == len("1234.0,5678.0900.0,100.0")

    def test_separated_pairs(self):
        sample, end = extract_live_speed("1000.0,2000.0\n3000.0,4000.0\n")
        assert sample == LiveSpeedSample(3.0, 4.0)
        assert end == len("1000.0,2000.0\n3000.0,4000.0")

    def test_incomplete_pair(self):
        assert extract_live_speed("1234.0,") == (None, 0)

    def test_empty_buffer(self):
        assert extract_live_speed("") == (None, 0)

    def test_parse_without_pair_is_zero(self):
        assert parse_live_speed("no data yet") == LiveSpeedSample.zero()

    def test_parse_returns_last_pair(self):
        assert parse_live_speed("0,0 8000,1000") == LiveSpeedSample(8.0, 1.0)

    def test_values_non_negative(self):
        sample = parse_live_speed("-5,-7")
        assert sample.download >= 0
        assert sample.upload >= 0
