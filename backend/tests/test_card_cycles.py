from datetime import date, timedelta

from nocry.services.invoices import compute_card_cycles, default_due_day


def test_cycle_before_closing_day() -> None:
    cycles = compute_card_cycles(25, 5, date(2024, 3, 10))

    assert cycles.current.start == date(2024, 2, 26)
    assert cycles.current.end == date(2024, 3, 25)
    assert cycles.current.due == date(2024, 4, 5)
    assert cycles.current.days_to_due == 26

    assert cycles.closed.start == date(2024, 1, 26)
    assert cycles.closed.end == date(2024, 2, 25)
    assert cycles.closed.due == date(2024, 3, 5)
    assert cycles.closed.days_to_due == -5


def test_cycle_after_closing_day_rolls_forward() -> None:
    cycles = compute_card_cycles(25, 5, date(2024, 3, 26))

    assert cycles.current.start == date(2024, 3, 26)
    assert cycles.current.end == date(2024, 4, 25)
    assert cycles.current.due == date(2024, 5, 5)
    assert cycles.closed.end == date(2024, 3, 25)


def test_missing_days_fall_back_to_defaults() -> None:
    assert default_due_day(25) == 28
    assert default_due_day(5) == 15

    cycles = compute_card_cycles(None, None, date(2024, 3, 10))

    assert cycles.current.end == date(2024, 3, 25)
    assert cycles.current.due == date(2024, 3, 28)


def test_closing_day_past_month_end_is_clamped() -> None:
    cycles = compute_card_cycles(31, 10, date(2024, 2, 10))

    assert cycles.current.end == date(2024, 2, 29)
    assert cycles.current.due == date(2024, 3, 10)


def test_closed_cycle_stops_before_a_shortened_current_cycle() -> None:
    # Feb 29 minus one month is Jan 29, while closing day 31 would end January on the 31st.
    cycles = compute_card_cycles(31, 10, date(2024, 2, 10))

    assert cycles.current.start == date(2024, 1, 30)
    assert cycles.closed.start == date(2024, 1, 1)
    assert cycles.closed.end == date(2024, 1, 29)
    assert cycles.closed.due == date(2024, 2, 10)
    assert cycles.closed.days_to_due == 0


def test_cycles_are_contiguous_for_every_day_of_the_year() -> None:
    day = date(2024, 1, 1)
    while day.year == 2024:
        for closing in (1, 5, 15, 25, 28, 29, 30, 31):
            for due in (1, 10, 28, 31):
                cycles = compute_card_cycles(closing, due, day)
                current, closed = cycles.current, cycles.closed
                assert current.start <= day <= current.end
                assert closed.end + timedelta(days=1) == current.start
                assert closed.start <= closed.end
                assert current.due >= current.end
                assert closed.due >= closed.end
        day += timedelta(days=1)
