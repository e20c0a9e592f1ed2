"""
Unit tests for classification and the comparator.
"""

import pytest

from conftest import make_table
from dcompare.comparator import Comparator, check_conservation, classify
from dcompare.errors import DataIntegrityError
from dcompare.models import CompareCounts, FindingsRecord, ResultStatus, Side


CUSTOMERS = make_table(tid=1)


def _load(repo, side, rows, tid=1, table="customers", batch=1):
    for pk_hash, column_hash in rows.items():
        repo.findings[side].append(
            FindingsRecord(
                tid=tid,
                table_name=table,
                thread_nbr=1,
                pk_hash=pk_hash,
                column_hash=column_hash,
                pk={"id": pk_hash},
                compare_result=None,
                batch_nbr=batch,
            )
        )


def _prepare(repo, source, target, run_id=100):
    _load(repo, Side.SOURCE, source)
    _load(repo, Side.TARGET, target)
    cid = repo.create_result(1, "customers", run_id)
    repo.increment_result_count(cid, Side.SOURCE, len(source))
    repo.increment_result_count(cid, Side.TARGET, len(target))
    return cid


class TestClassify:
    """Test the pure classification rules"""

    def test_identical(self):
        rows = {"a": "1", "b": "2", "c": "3"}
        assert classify(rows, dict(rows)) == CompareCounts(equal=3)

    def test_value_differs(self):
        counts = classify({"a": "1", "b": "2"}, {"a": "1", "b": "X"})
        assert counts == CompareCounts(equal=1, not_equal=1)

    def test_missing_both_ways(self):
        counts = classify({"a": "1", "b": "2"}, {"a": "1", "c": "3"})
        assert counts == CompareCounts(equal=1, missing_source=1, missing_target=1)

    def test_empty_target(self):
        assert classify({"a": "1"}, {}) == CompareCounts(missing_target=1)

    def test_both_empty(self):
        counts = classify({}, {})
        assert counts.total == 0
        assert counts.in_sync


class TestConservation:
    def test_balanced(self):
        check_conservation(CompareCounts(equal=5, not_equal=1, missing_target=2, missing_source=3), 8, 9)

    def test_unbalanced(self):
        with pytest.raises(DataIntegrityError, match="do not add up"):
            check_conservation(CompareCounts(equal=5), 6, 5)


class TestComparator:
    """Test comparison against the in-memory repository"""

    def test_in_sync(self, fake_repo):
        cid = _prepare(fake_repo, {"a": "1", "b": "2"}, {"a": "1", "b": "2"})

        result = Comparator(fake_repo).compare(CUSTOMERS, 100, cid=cid)

        assert result.status == ResultStatus.COMPLETE
        assert result.equal_cnt == 2
        assert result.counts.in_sync

    def test_differences(self, fake_repo):
        cid = _prepare(
            fake_repo,
            {"a": "1", "b": "2", "c": "3"},
            {"a": "1", "b": "X", "d": "4"},
        )

        result = Comparator(fake_repo).compare(CUSTOMERS, 100, cid=cid)

        assert (result.equal_cnt, result.not_equal_cnt) == (1, 1)
        assert (result.missing_target_cnt, result.missing_source_cnt) == (1, 1)
        codes = {f.pk_hash: f.compare_result for f in fake_repo.findings[Side.TARGET]}
        assert codes == {"a": "e", "b": "n", "d": "m"}

    def test_empty_table(self, fake_repo):
        cid = _prepare(fake_repo, {}, {})
        result = Comparator(fake_repo).compare(CUSTOMERS, 100, cid=cid)
        assert result.counts.total == 0
        assert result.status == ResultStatus.COMPLETE

    def test_recompare_is_idempotent(self, fake_repo):
        cid = _prepare(fake_repo, {"a": "1", "b": "2"}, {"a": "1"})
        comparator = Comparator(fake_repo)

        first = comparator.compare(CUSTOMERS, 100, cid=cid)
        second = comparator.compare(CUSTOMERS, 100, cid=cid)

        assert first.counts == second.counts

    def test_finds_result_for_run_when_cid_missing(self, fake_repo):
        cid = _prepare(fake_repo, {"a": "1"}, {"a": "1"}, run_id=555)
        result = Comparator(fake_repo).compare(CUSTOMERS, 555)
        assert result.cid == cid

    def test_creates_result_when_run_has_none(self, fake_repo):
        result = Comparator(fake_repo).compare(CUSTOMERS, 777)
        assert result.rid == 777
        assert result.counts.total == 0

    def test_loaded_counts_disagree_with_findings(self, fake_repo):
        cid = _prepare(fake_repo, {"a": "1"}, {"a": "1"})
        fake_repo.increment_result_count(cid, Side.SOURCE, 1)

        with pytest.raises(DataIntegrityError) as exc_info:
            Comparator(fake_repo).compare(CUSTOMERS, 100, cid=cid)

        assert exc_info.value.table == "customers"
        assert exc_info.value.phase == "compare"
        assert fake_repo.get_result(cid).status == ResultStatus.RUNNING

    def test_same_table_name_in_two_schemas(self, fake_repo):
        _load(fake_repo, Side.SOURCE, {"a": "1", "b": "2"}, tid=1, table="orders")
        _load(fake_repo, Side.TARGET, {"a": "1", "b": "2"}, tid=1, table="orders")
        _load(fake_repo, Side.SOURCE, {"a": "9"}, tid=2, table="orders")
        _load(fake_repo, Side.TARGET, {"a": "9"}, tid=2, table="orders")
        comparator = Comparator(fake_repo)
        results = {}
        for tid, rows in ((1, 2), (2, 1)):
            cid = fake_repo.create_result(tid, "orders", 100)
            fake_repo.increment_result_count(cid, Side.SOURCE, rows)
            fake_repo.increment_result_count(cid, Side.TARGET, rows)
            results[tid] = comparator.compare(make_table(tid=tid, name="orders"), 100, cid=cid)

        assert results[1].equal_cnt == 2
        assert results[2].equal_cnt == 1
        assert results[1].counts.in_sync and results[2].counts.in_sync
