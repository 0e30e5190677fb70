import pytest

from app.errors import NotFoundError, ValidationError
from app.reconciler import (
    CombinedSeriesKey,
    SeriesReconciler,
    compute_missing_issues,
    format_combined_id,
    parse_combined_id,
    reconcile_key,
)
from app.schemas import CollectionKind, SeriesPresence

from conftest import add_item

COLLECTION = CollectionKind.COLLECTION
WISHLIST = CollectionKind.WISHLIST


def test_compute_missing_issues_reports_gaps():
    assert compute_missing_issues(5, [1, 2, 4]) == [3, 5]


def test_compute_missing_issues_without_run_length():
    assert compute_missing_issues(0, [1, 2]) == []
    assert compute_missing_issues(None, []) == []


def test_fractional_issue_covers_its_integer_part():
    assert compute_missing_issues(3, [1, 2.5]) == [3]


def test_compute_missing_issues_ignores_numbers_past_the_run():
    assert compute_missing_issues(2, [7, 0.5]) == [1, 2]


def test_reconcile_key_folds_ascii_only():
    assert reconcile_key("  The Boys ", "DYNAMITE") == ("the boys", "dynamite")
    # NOCASE leaves non-ASCII letters alone
    assert reconcile_key("ÉLAN", "x") != reconcile_key("élan", "x")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("combined-3-7", CombinedSeriesKey(3, 7)),
        ("combined-3-null", CombinedSeriesKey(3, None)),
        ("combined-null-7", CombinedSeriesKey(None, 7)),
        ("regular-12", CombinedSeriesKey(12, None)),
        ("wishlist-4", CombinedSeriesKey(None, 4)),
        ("9", CombinedSeriesKey(9, 9, legacy=True)),
    ],
)
def test_parse_combined_id_forms(raw, expected):
    assert parse_combined_id(raw) == expected


@pytest.mark.parametrize(
    "raw", ["combined-null-null", "regular-", "wishlist-x", "abc", "", "combined-1"]
)
def test_parse_combined_id_rejects_malformed(raw):
    with pytest.raises(ValidationError):
        parse_combined_id(raw)


def test_format_combined_id_matches_parse():
    assert format_combined_id(3, 7) == "combined-3-7"
    assert format_combined_id(3, None) == "regular-3"
    assert format_combined_id(None, 7) == "wishlist-7"
    with pytest.raises(ValueError):
        format_combined_id(None, None)


@pytest.mark.asyncio()
async def test_combined_view_merges_both_catalogues(store):
    owned_one = await add_item(store, COLLECTION, series="Saga", issue_no=1, publisher="Image", total_issues=5)
    owned_three = await add_item(store, COLLECTION, series="Saga", issue_no=3, publisher="Image")
    wanted_two = await add_item(store, WISHLIST, series="Saga", issue_no=2, publisher="Image")
    wanted_three = await add_item(
        store, WISHLIST, series="Saga", issue_no=3, publisher="Image", variant="Cover B"
    )

    view = await SeriesReconciler(store).get_combined_view(
        owned_one.series_id, wanted_two.series_id
    )

    assert view.series.kind == SeriesPresence.COMBINED
    assert view.series.name == "Saga"
    assert view.series.total_issues == 5
    assert [issue.id for issue in view.collection_issues] == [owned_one.id, owned_three.id]
    assert [issue.id for issue in view.wishlist_items] == [wanted_two.id, wanted_three.id]
    assert [(issue.issue_no, issue.type) for issue in view.all_issues] == [
        (1.0, COLLECTION),
        (2.0, WISHLIST),
        (3.0, COLLECTION),
        (3.0, WISHLIST),
    ]
    # wishlist items never count as owned
    assert view.missing_issues == [2, 4, 5]
    assert view.stats.collection_count == 2
    assert view.stats.wishlist_count == 2
    assert view.stats.missing_count == 3
    assert view.stats.total_count == 4


@pytest.mark.asyncio()
async def test_combined_view_finds_wishlist_series_by_name(store):
    owned = await add_item(store, COLLECTION, series="Saga", issue_no=1, publisher="Image")
    wanted = await add_item(store, WISHLIST, series="SAGA", issue_no=2, publisher="image")
    await add_item(store, WISHLIST, series="Saga", issue_no=9, publisher="Marvel")

    view = await SeriesReconciler(store).get_combined_view(owned.series_id, None)

    assert view.series.kind == SeriesPresence.COMBINED
    assert view.series.wishlist_id == wanted.series_id
    assert [item.id for item in view.wishlist_items] == [wanted.id]


@pytest.mark.asyncio()
async def test_collection_only_view(store):
    owned = await add_item(store, COLLECTION, series="Hawkeye", issue_no=1, total_issues=2)
    view = await SeriesReconciler(store).get_combined_view(owned.series_id, None)
    assert view.series.kind == SeriesPresence.REGULAR
    assert view.series.wishlist_id is None
    assert view.wishlist_items == []
    assert view.missing_issues == [2]


@pytest.mark.asyncio()
async def test_wishlist_only_view_reports_no_missing_issues(store):
    wanted = await add_item(store, WISHLIST, series="Paper Girls", issue_no=4, total_issues=30)
    view = await SeriesReconciler(store).get_combined_view(None, wanted.series_id)
    assert view.series.kind == SeriesPresence.WISHLIST_ONLY
    assert view.series.collection_id is None
    assert view.missing_issues == []
    assert view.stats.total_count == 1


@pytest.mark.asyncio()
async def test_unknown_series_is_not_found(store):
    with pytest.raises(NotFoundError):
        await SeriesReconciler(store).get_combined_view(404, 405)


@pytest.mark.asyncio()
async def test_legacy_id_falls_back_to_wishlist(store):
    wanted = await add_item(store, WISHLIST, series="East of West", issue_no=1)
    view = await SeriesReconciler(store).get_combined_view_by_id(str(wanted.series_id))
    assert view.series.kind == SeriesPresence.WISHLIST_ONLY
    assert view.series.wishlist_id == wanted.series_id


@pytest.mark.asyncio()
async def test_legacy_id_prefers_collection(store):
    owned = await add_item(store, COLLECTION, series="Descender", issue_no=1)
    view = await SeriesReconciler(store).get_combined_view_by_id(str(owned.series_id))
    assert view.series.collection_id == owned.series_id


@pytest.mark.asyncio()
async def test_list_combined_series_pairs_by_name_and_publisher(store):
    await add_item(store, COLLECTION, series="Saga", issue_no=1, publisher="Image")
    await add_item(store, COLLECTION, series="Saga", issue_no=2, publisher="Image")
    await add_item(store, WISHLIST, series="saga", issue_no=3, publisher="Image")
    await add_item(store, COLLECTION, series="Batman", issue_no=1, publisher="DC")
    await add_item(store, WISHLIST, series="Monstress", issue_no=1, publisher="Image")

    summaries = await SeriesReconciler(store).list_combined_series()

    assert [(s.name, s.kind) for s in summaries] == [
        ("Batman", SeriesPresence.REGULAR),
        ("Monstress", SeriesPresence.WISHLIST_ONLY),
        ("Saga", SeriesPresence.COMBINED),
    ]
    saga = summaries[2]
    assert saga.combined_id == f"combined-{saga.collection_id}-{saga.wishlist_id}"
    assert saga.collection_count == 2
    assert saga.wishlist_count == 1
    assert summaries[0].combined_id == f"regular-{summaries[0].collection_id}"
    assert summaries[1].combined_id == f"wishlist-{summaries[1].wishlist_id}"
