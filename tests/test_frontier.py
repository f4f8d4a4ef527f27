from conftest import SEARCH_URL, detail_url, search_page
from frontier import Frontier
from models import EntryKind


def _drain(frontier):
    entries = []
    while True:
        entry = frontier.next()
        if entry is None:
            return entries
        entries.append(entry)


def test_duplicate_offers_yield_one_dispatch():
    frontier = Frontier(max_pages=5)
    job = detail_url("one")
    assert frontier.offer_detail(job)
    assert not frontier.offer_detail(job)
    assert not frontier.offer_detail(job + "?utm_source=feed#apply")

    assert [e.url for e in _drain(frontier)] == [job]


def test_seed_uses_depth_one_and_normalizes():
    frontier = Frontier(max_pages=3)
    admitted = frontier.seed([SEARCH_URL, SEARCH_URL + "#results"])
    assert len(admitted) == 1
    assert admitted[0].depth == 1
    assert admitted[0].kind == EntryKind.LIST


def test_pagination_rejected_at_ceiling():
    frontier = Frontier(max_pages=2)
    assert frontier.offer_pagination(search_page(2), current_depth=1)
    assert not frontier.offer_pagination(search_page(3), current_depth=2)
    entry = frontier.next()
    assert entry.depth == 2


def test_offers_refused_once_target_reached():
    reached = {"value": False}
    frontier = Frontier(max_pages=5, target_reached=lambda: reached["value"])
    reached["value"] = True
    assert not frontier.offer_detail(detail_url("late"))
    assert not frontier.offer_pagination(search_page(2), current_depth=1)
    assert frontier.is_idle()


def test_details_dispatched_before_lists():
    frontier = Frontier(max_pages=5)
    frontier.seed([SEARCH_URL])
    frontier.offer_pagination(search_page(2), current_depth=1)
    frontier.offer_detail(detail_url("a"))
    frontier.offer_detail(detail_url("b"))

    kinds = [e.kind for e in _drain(frontier)]
    assert kinds == [EntryKind.DETAIL, EntryKind.DETAIL, EntryKind.LIST, EntryKind.LIST]


def test_requeue_only_recovered_entries_and_only_once():
    frontier = Frontier(max_pages=5)
    frontier.offer_detail(detail_url("blocked"))
    entry = frontier.next()

    assert not frontier.requeue(entry)

    recovered = entry.with_attempt(entry.attempt.mark_recovered())
    assert frontier.requeue(recovered)
    assert not frontier.requeue(recovered)
    assert frontier.next().url == entry.url


def test_in_flight_tracking_and_idle():
    frontier = Frontier(max_pages=5)
    frontier.offer_detail(detail_url("x"))
    entry = frontier.next()
    assert not frontier.is_idle()
    assert frontier.has_detail_work()
    assert frontier.in_flight(EntryKind.DETAIL) == 1

    frontier.mark_done(entry)
    frontier.mark_done(entry)
    assert frontier.in_flight() == 0
    assert frontier.is_idle()


def test_known_details_are_skipped_and_counted():
    known = {detail_url("old")}
    frontier = Frontier(max_pages=5, known=known)
    assert not frontier.offer_detail(detail_url("old"))
    assert frontier.offer_detail(detail_url("new"))
    assert frontier.skipped_known == 1


def test_preload_seen_blocks_future_offers():
    frontier = Frontier(max_pages=5)
    assert frontier.preload_seen([detail_url("saved"), detail_url("saved")]) == 1
    assert not frontier.offer_detail(detail_url("saved"))
    assert frontier.seen_count() == 1
