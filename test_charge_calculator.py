from decimal import Decimal

import pytest

from hms.errors import ValidationError
from hms.models.core import Guest, Reservation, ReservationLine
from hms.services.billing import (
    ChargeLine, ChargeRule, DiscountSpec, applicable_rules, compute_charges, money, parse_amount,
)
from hms.services.snapshots import recompute, refresh, snapshot_matches

VAT = ChargeRule("VAT", 13)
SERVICE = ChargeRule("Service Charge", 10)


def room(nights, rate):
    return ChargeLine("Room 101 - Deluxe", nights, rate)


class TestComputeCharges:
    def test_subtotal_taxes_and_total(self):
        b = compute_charges([room(2, 5000), ChargeLine("Breakfast", 2, "450.50")], [VAT, SERVICE])
        assert b.subtotal == Decimal("10901.00")
        assert [(t.name, t.amount) for t in b.tax_breakdown] == [
            ("VAT", Decimal("1417.13")),
            ("Service Charge", Decimal("1090.10")),
        ]
        assert b.tax_total == Decimal("2507.23")
        assert b.discount_amount == Decimal("0.00")
        assert b.total == Decimal("13408.23")

    def test_same_inputs_same_output(self):
        args = ([room(3, "3333.33")], [VAT], DiscountSpec("percentage", "7.5"))
        assert compute_charges(*args) == compute_charges(*args)
        assert compute_charges(*args).as_dict() == compute_charges(*args).as_dict()

    def test_tax_uses_pre_discount_subtotal(self):
        b = compute_charges([room(1, 1000)], [VAT], DiscountSpec("percentage", 50))
        assert b.tax_total == Decimal("130.00")
        assert b.discount_amount == Decimal("500.00")
        assert b.total == Decimal("630.00")

    def test_fixed_discount_is_clamped(self):
        b = compute_charges([room(1, 100)], [], DiscountSpec("fixed", 500))
        assert b.discount_amount == Decimal("100.00")
        assert b.total == Decimal("0.00")

    def test_clamp_includes_taxes(self):
        b = compute_charges([room(1, 100)], [VAT], DiscountSpec("fixed", 500))
        assert b.discount_amount == Decimal("113.00")
        assert b.total == Decimal("0.00")

    def test_percentage_discount_is_of_subtotal(self):
        b = compute_charges([room(1, 1000)], [VAT], DiscountSpec("percentage", 10))
        assert b.discount_amount == Decimal("100.00")
        assert b.total == Decimal("1030.00")

    @pytest.mark.parametrize("discount", [
        None,
        DiscountSpec(),
        DiscountSpec("percentage", 0),
        DiscountSpec("percentage", 100),
        DiscountSpec("fixed", "0.01"),
        DiscountSpec("fixed", 10**9),
    ])
    def test_never_negative(self, discount):
        for lines in ([], [room(0, 5000)], [room(1, "0.01")], [room(7, "1234.56")]):
            b = compute_charges(lines, [VAT, SERVICE], discount)
            assert b.total >= 0
            assert b.discount_amount >= 0
            assert b.discount_amount <= b.subtotal + b.tax_total

    def test_inactive_rules_are_skipped(self):
        b = compute_charges([room(1, 1000)], [VAT, ChargeRule("Old levy", 5, active=False)])
        assert [t.name for t in b.tax_breakdown] == ["VAT"]
        assert b.tax_total == Decimal("130.00")

    def test_each_tax_line_rounded_half_up(self):
        b = compute_charges([ChargeLine("Tea", 1, "0.50")], [ChargeRule("A", 5), ChargeRule("B", 5)])
        # 0.025 -> 0.03 per line
        assert [t.amount for t in b.tax_breakdown] == [Decimal("0.03"), Decimal("0.03")]
        assert b.tax_total == Decimal("0.06")

    def test_no_float_drift(self):
        lines = [ChargeLine("Item", 1, "0.10")] * 3
        assert compute_charges(lines).subtotal == Decimal("0.30")

    def test_as_dict_uses_two_decimal_strings(self):
        d = compute_charges([room(1, 1000)], [VAT], DiscountSpec("fixed", 30)).as_dict()
        assert d == {
            "subtotal": "1000.00",
            "tax_breakdown": [{"name": "VAT", "rate": "13.00", "amount": "130.00"}],
            "tax_total": "130.00",
            "discount_amount": "30.00",
            "total": "1100.00",
        }


class TestValidation:
    @pytest.mark.parametrize("qty, unit, field", [
        (-1, 100, "lines[0].quantity"),
        ("", 100, "lines[0].quantity"),
        (None, 100, "lines[0].quantity"),
        ("two", 100, "lines[0].quantity"),
        (1, "NaN", "lines[0].unit_amount"),
        (1, float("inf"), "lines[0].unit_amount"),
        (1, -0.01, "lines[0].unit_amount"),
        (True, 100, "lines[0].quantity"),
    ])
    def test_bad_line_values_name_the_field(self, qty, unit, field):
        with pytest.raises(ValidationError) as e:
            compute_charges([ChargeLine("x", qty, unit)])
        assert e.value.field == field

    def test_field_index_points_at_the_bad_line(self):
        with pytest.raises(ValidationError) as e:
            compute_charges([room(1, 100), room(1, 100), room(1, -5)])
        assert e.value.field == "lines[2].unit_amount"

    def test_negative_rate(self):
        with pytest.raises(ValidationError) as e:
            compute_charges([room(1, 100)], [VAT, ChargeRule("bad", -1)])
        assert e.value.field == "rules[1].rate"

    @pytest.mark.parametrize("discount, message", [
        (DiscountSpec("coupon", 10), "unknown discount type"),
        (DiscountSpec("fixed", -1), "must not be negative"),
        (DiscountSpec("percentage", "abc"), "must be a number"),
        (DiscountSpec("percentage", "100.01"), "between 0 and 100"),
    ])
    def test_bad_discount(self, discount, message):
        with pytest.raises(ValidationError) as e:
            compute_charges([room(1, 100)], [], discount)
        assert message in e.value.message

    def test_none_discount_ignores_value(self):
        assert compute_charges([room(1, 100)], [], DiscountSpec("none", -5)).total == Decimal("100.00")

    def test_parse_amount_is_strict(self):
        assert parse_amount(" 12.5 ", "x") == Decimal("12.5")
        assert parse_amount(Decimal("3"), "x") == Decimal("3")
        for bad in (None, "", "  ", "1,000", object()):
            with pytest.raises(ValidationError):
                parse_amount(bad, "x")


class TestApplicableRules:
    class Row:
        def __init__(self, name, rate, status="active", res=False, orders=False):
            self.name, self.rate, self.status = name, rate, status
            self.apply_to_reservations, self.apply_to_orders = res, orders

    def test_filters_by_scope_and_status(self):
        registry = [
            self.Row("VAT", "13.00", res=True, orders=True),
            self.Row("Service Charge", "10.00", orders=True),
            self.Row("Tourism levy", "2.00", status="inactive", res=True),
        ]
        assert applicable_rules(registry, "reservation") == [ChargeRule("VAT", money(13))]
        assert [r.name for r in applicable_rules(registry, "order")] == ["VAT", "Service Charge"]

    def test_unknown_scope(self):
        with pytest.raises(ValidationError):
            applicable_rules([], "spa")


class TestSnapshotRoundTrip:
    def test_refetched_snapshot_recomputes_to_same_total(self, db, rng_suffix):
        g = Guest(name=f"Guest {rng_suffix}", credit_balance=0)
        db.add(g); db.flush()
        r = Reservation(guest_id=g.id, confirmation_number=f"RT-{rng_suffix}")
        db.add(r); db.flush()
        db.add(ReservationLine(reservation_id=r.id, position=0, description="Room 204",
                               quantity=Decimal("3"), unit_amount=Decimal("3333.33")))
        db.flush()
        breakdown = refresh(db, r, rules=[VAT, SERVICE], discount=DiscountSpec("percentage", "12.5", "corporate"))
        db.commit()
        rid = r.id

        db.expire_all()
        again = db.get(Reservation, rid)
        assert again.total_amount == breakdown.total
        assert recompute(db, again) == breakdown
        assert snapshot_matches(db, again)
        assert again.discount_reason == "corporate"
