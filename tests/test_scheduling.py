"""Unit tests for pricing, calendar windows and slot generation."""

from loconomy_api.app.services.availability_service import build_slots, compute_windows, to_hhmm, to_minutes
from loconomy_api.app.services.booking_service import (
    CODE_ALPHABET,
    CODE_LENGTH,
    allowed_targets,
    calculate_price,
    generate_confirmation_code,
)


def _weekly(start, end, available=True):
    return {"start_time": start, "end_time": end, "is_available": 1 if available else 0}


def _override(kind, start=None, end=None):
    return {"availability_type": kind, "start_time": start, "end_time": end}


def test_hourly_price_respects_minimum_hours():
    price = calculate_price("hourly", None, 50, 2, 60, 10)
    assert price == {"base_price": 100.0, "service_fee": 10.0, "total_amount": 110.0}


def test_hourly_price_scales_with_duration():
    price = calculate_price("hourly", None, 80, 1, 90, 10)
    assert price["base_price"] == 120.0
    assert price["total_amount"] == 132.0


def test_fixed_price_rounds_fee_to_cents():
    price = calculate_price("fixed", 99.99, None, None, 60, 10)
    assert price["base_price"] == 99.99
    assert price["service_fee"] == 10.0
    assert price["total_amount"] == 109.99


def test_confirmation_code_alphabet():
    code = generate_confirmation_code()
    assert len(code) == CODE_LENGTH
    assert set(code) <= set(CODE_ALPHABET)
    assert not set(code) & set("01IO")


def test_time_conversions():
    assert to_minutes("09:30") == 570
    assert to_hhmm(570) == "09:30"
    assert to_hhmm(0) == "00:00"


def test_weekly_windows_without_overrides():
    weekly = [_weekly("09:00", "12:00"), _weekly("13:00", "17:00"), _weekly("18:00", "20:00", available=False)]
    assert compute_windows(weekly, []) == [(540, 720), (780, 1020)]


def test_available_override_replaces_weekly_hours():
    weekly = [_weekly("09:00", "17:00")]
    windows = compute_windows(weekly, [_override("available", "18:00", "21:00")])
    assert windows == [(1080, 1260)]


def test_all_day_available_override_keeps_weekly_hours():
    weekly = [_weekly("09:00", "17:00")]
    assert compute_windows(weekly, [_override("available")]) == [(540, 1020)]


def test_blocked_only_override_leaves_no_windows():
    # A day with overrides uses only its available overrides as windows.
    weekly = [_weekly("09:00", "17:00")]
    assert compute_windows(weekly, [_override("blocked", "12:00", "13:00")]) == []


def test_break_is_cut_out_of_available_override():
    overrides = [_override("available"), _override("break", "12:00", "13:00")]
    assert compute_windows([_weekly("09:00", "17:00")], overrides) == [(540, 720), (780, 1020)]


def test_all_day_block_wins():
    overrides = [_override("available", "09:00", "17:00"), _override("blocked")]
    assert compute_windows([], overrides) == []


def test_build_slots_skips_busy_and_early_slots():
    slots = build_slots([(540, 780)], 60, busy=[(600, 660)], not_before=560)
    assert [(s.start_time, s.end_time) for s in slots] == [("11:00", "12:00"), ("12:00", "13:00")]


def test_build_slots_drops_partial_tail():
    slots = build_slots([(540, 690)], 60)
    assert [s.start_time for s in slots] == ["09:00", "10:00"]


def test_provider_targets_follow_lifecycle():
    assert allowed_targets("provider", True, False, "pending") == ["confirmed", "cancelled"]
    assert allowed_targets("provider", True, False, "in_progress") == ["completed"]


def test_customer_can_cancel_early_and_dispute_late():
    assert allowed_targets("consumer", False, True, "confirmed") == ["cancelled"]
    assert allowed_targets("consumer", False, True, "in_progress") == ["disputed"]
    assert allowed_targets("consumer", False, True, "completed") == ["disputed"]


def test_admin_may_take_any_valid_step():
    assert allowed_targets("admin", False, False, "disputed") == ["completed", "cancelled"]
    assert allowed_targets("admin", False, False, "cancelled") == []
