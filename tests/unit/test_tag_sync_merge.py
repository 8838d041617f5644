# tests/unit/test_tag_sync_merge.py
import pytest

from orderflow.services.tag_sync import merge_tags, replace_prefixed, split_platform_tags, tag_for

pytestmark = pytest.mark.grp_sync


def test_tag_for_uses_status_prefix():
    assert tag_for("dispatched") == "ERP - Dispatched"
    assert tag_for("booked", prefix="X:") == "X:Booked"


def test_merge_replaces_old_status_tag_and_keeps_order():
    tags = ["VIP", "ERP - Pending", "Courier - PostEx", "COD"]
    merged = merge_tags(tags, "dispatched")
    assert merged == ["VIP", "Courier - PostEx", "COD", "ERP - Dispatched"]


def test_merge_leaves_at_most_one_status_tag():
    merged = merge_tags(["ERP - Pending", "ERP - Booked", "ERP - Booked"], "returned")
    assert [t for t in merged if t.startswith("ERP - ")] == ["ERP - Returned"]


def test_merge_is_idempotent():
    once = merge_tags(["VIP"], "booked")
    assert merge_tags(once, "booked") == once


def test_replace_prefixed_dedupes_and_skips_blanks():
    assert replace_prefixed(["a", "", "a", "P-x", " b "], "P-", "P-y") == ["a", "b", "P-y"]


def test_split_platform_tags():
    assert split_platform_tags("VIP, COD ,, ERP - Booked") == ["VIP", "COD", "ERP - Booked"]
    assert split_platform_tags(None) == []
