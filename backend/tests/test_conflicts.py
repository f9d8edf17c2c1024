"""
Tests for conflict detection.
"""

from datetime import date

from courtbook.scheduling import BookingSnapshot, Candidate, ConflictDetector, SlotIndex

DAY = date(2026, 3, 14)


def snap(booking_id, resources, start, end, day=DAY):
    return BookingSnapshot(
        id=booking_id, resources=tuple(sorted(resources)), date=day, start=start, end=end, title=f"#{booking_id}"
    )


def candidate(resources, start, end, day=DAY):
    return Candidate(resources=tuple(sorted(resources)), date=day, start=start, end=end)


def test_free_court_has_no_conflict():
    detector = ConflictDetector(SlotIndex([snap(1, ["Court 1"], 540, 660)]))

    result = detector.detect(candidate(["Court 2"], 540, 660))

    assert not result.conflict
    assert result.conflicting_bookings == ()
    assert detector.is_free(candidate(["Court 2"], 540, 660))


def test_back_to_back_bookings_do_not_conflict():
    detector = ConflictDetector(SlotIndex([snap(1, ["Court 1"], 540, 660)]))

    assert not detector.detect(candidate(["Court 1"], 660, 780)).conflict
    assert not detector.detect(candidate(["Court 1"], 420, 540)).conflict


def test_reports_every_conflicting_booking_once():
    detector = ConflictDetector(SlotIndex([
        snap(1, ["Court 1", "Court 2"], 540, 660),
        snap(2, ["Court 2"], 660, 720),
        snap(3, ["Court 3"], 600, 700),
    ]))

    result = detector.detect(candidate(["Court 1", "Court 2", "Court 3"], 600, 700))

    # Booking 1 sits on two requested courts but is listed once
    assert [b.id for b in result.conflicting_bookings] == [1, 2, 3]
    assert result.conflict
    assert not detector.is_free(candidate(["Court 1", "Court 2", "Court 3"], 600, 700))


def test_order_is_court_then_start_then_id():
    detector = ConflictDetector(SlotIndex([
        snap(5, ["Court 2"], 540, 600),
        snap(4, ["Court 1"], 600, 660),
        snap(3, ["Court 1"], 540, 600),
    ]))

    result = detector.detect(candidate(["Court 2", "Court 1"], 480, 720))

    assert [b.id for b in result.conflicting_bookings] == [3, 4, 5]


def test_detection_is_repeatable():
    index = SlotIndex([snap(1, ["Court 1"], 540, 660), snap(2, ["Court 1"], 660, 720)])
    detector = ConflictDetector(index)
    wanted = candidate(["Court 1"], 600, 700)

    assert detector.detect(wanted) == detector.detect(wanted)


def test_exclude_id_ignores_the_booking_being_moved():
    detector = ConflictDetector(SlotIndex([snap(1, ["Court 1"], 540, 660)]))

    # Sliding booking 1 by thirty minutes overlaps only itself
    assert not detector.detect(candidate(["Court 1"], 570, 690), exclude_id=1).conflict
    assert detector.detect(candidate(["Court 1"], 570, 690)).conflict


def test_other_day_is_independent():
    detector = ConflictDetector(SlotIndex([snap(1, ["Court 1"], 540, 660)]))

    assert not detector.detect(candidate(["Court 1"], 540, 660, day=date(2026, 3, 15))).conflict
