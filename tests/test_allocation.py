# tests/test_allocation.py
from __future__ import annotations

import threading

import pytest

from src.allocation import AllocationEngine, DistributionLedger, Representative
from src.allocation.engine import matched_code
from src.db import get_connection
from src.exceptions import LedgerConflictError

CODES = ["6821801", "6822600"]


def _engine(conn) -> AllocationEngine:
    return AllocationEngine(
        conn,
        phone_min_digits=10,
        area_prefix_template="55({ddd})",
        max_limit=1000,
    )


def _seed_regions(conn, insert_company, per_region: int = 4) -> dict[str, list[int]]:
    out: dict[str, list[int]] = {"11": [], "21": []}
    for ddd in ("11", "21"):
        for i in range(per_region):
            code = CODES[i % 2]
            out[ddd].append(
                insert_company(conn, phone_1=f"55({ddd})9{i:04d}-0000", primary_cnae=code)
            )
    return out


def _distributed(conn) -> list[int]:
    return [r[0] for r in conn.execute("SELECT company_id FROM distributions").fetchall()]


def test_each_rep_gets_companies_from_own_area(conn, insert_company, insert_rep) -> None:
    regions = _seed_regions(conn, insert_company)
    insert_rep(conn, "Ana", "11")
    insert_rep(conn, "Bruno", "21")

    run = _engine(conn).allocate(CODES, 3)

    ana, bruno = run.allocations
    assert [c["id"] for c in ana.companies] == regions["11"][:3]
    assert [c["id"] for c in bruno.companies] == regions["21"][:3]
    assert ana.error is None and bruno.error is None
    assert run.grand_total == 6
    assert sorted(_distributed(conn)) == sorted(regions["11"][:3] + regions["21"][:3])


def test_repeated_runs_never_hand_out_a_company_twice(conn, insert_company, insert_rep) -> None:
    regions = _seed_regions(conn, insert_company, per_region=5)
    insert_rep(conn, "Ana", "11")
    engine = _engine(conn)

    first = engine.allocate(CODES, 2).allocations[0]
    second = engine.allocate(CODES, 2).allocations[0]
    third = engine.allocate(CODES, 2).allocations[0]
    fourth = engine.allocate(CODES, 2).allocations[0]

    handed = [c["id"] for a in (first, second, third) for c in a.companies]
    assert handed == regions["11"]
    assert len(set(handed)) == len(handed)
    assert third.total == 1  # partial supply
    assert fourth.total == 0 and fourth.error is None


def test_two_reps_same_area_get_disjoint_lists(conn, insert_company, insert_rep) -> None:
    regions = _seed_regions(conn, insert_company, per_region=4)
    insert_rep(conn, "Ana", "11")
    insert_rep(conn, "Carla", "11")

    ana, carla = _engine(conn).allocate(CODES, 3).allocations

    assert [c["id"] for c in ana.companies] == regions["11"][:3]
    assert [c["id"] for c in carla.companies] == regions["11"][3:]


def test_inactive_reps_are_skipped(conn, insert_company, insert_rep) -> None:
    _seed_regions(conn, insert_company)
    insert_rep(conn, "Ana", "11", active=0)
    run = _engine(conn).allocate(CODES, 3)
    assert run.allocations == []
    assert run.grand_total == 0
    assert _distributed(conn) == []


def test_draw_excludes_unusable_phones_and_other_codes(conn, insert_company, insert_rep) -> None:
    good = insert_company(conn, phone_1="55(11)91234-5678")
    insert_company(conn, phone_1="55(11)1234")
    insert_company(conn, phone_1="55(11)91234-5679", primary_cnae="1091102")
    secondary = insert_company(
        conn,
        phone_1="55(11)91234-5670",
        primary_cnae="4721102",
        secondary_cnae="4721102,6822600",
    )
    insert_rep(conn, "Ana", "11")

    ana = _engine(conn).allocate(CODES, 10).allocations[0]

    assert [c["id"] for c in ana.companies] == [good, secondary]
    cnaes = dict(conn.execute("SELECT company_id, cnae FROM distributions").fetchall())
    assert cnaes == {good: "6821801", secondary: "6822600"}


def test_bad_area_code_marks_only_that_rep(conn, insert_company, insert_rep) -> None:
    regions = _seed_regions(conn, insert_company)
    insert_rep(conn, "Ana", "1%")
    insert_rep(conn, "Bruno", "21")

    bad, good = _engine(conn).allocate(CODES, 2).allocations

    assert bad.total == 0 and bad.error
    assert [c["id"] for c in good.companies] == regions["21"][:2]


def test_ledger_conflict_marks_only_that_rep(conn, insert_company, insert_rep, monkeypatch) -> None:
    regions = _seed_regions(conn, insert_company)
    insert_rep(conn, "Ana", "11")
    insert_rep(conn, "Bruno", "21")
    engine = _engine(conn)

    real_append = DistributionLedger.append

    def flaky_append(self, entries, representative_id, representative_name, **kwargs):
        if representative_name == "Ana":
            raise LedgerConflictError("simulated", representative_id=representative_id)
        return real_append(self, entries, representative_id, representative_name, **kwargs)

    monkeypatch.setattr(DistributionLedger, "append", flaky_append)

    ana, bruno = engine.allocate(CODES, 2).allocations

    assert ana.companies == [] and ana.error == "simulated"
    assert [c["id"] for c in bruno.companies] == regions["21"][:2]
    assert sorted(_distributed(conn)) == sorted(regions["21"][:2])


def test_run_uses_one_timestamp(conn, insert_company, insert_rep) -> None:
    _seed_regions(conn, insert_company)
    insert_rep(conn, "Ana", "11")
    insert_rep(conn, "Bruno", "21")

    run = _engine(conn).allocate(CODES, 2)

    stamps = {r[0] for r in conn.execute("SELECT distributed_at FROM distributions")}
    assert stamps == {run.exported_at}
    payload = run.to_dict()
    assert payload["grand_total"] == 4
    assert [lst["ddd"] for lst in payload["lists"]] == ["11", "21"]
    assert payload["lists"][0]["representative"]["name"] == "Ana"


@pytest.mark.parametrize("limit", [0, -1, 1001])
def test_limit_is_validated(conn, limit: int) -> None:
    with pytest.raises(ValueError):
        _engine(conn).allocate(CODES, limit)


def test_codes_are_validated(conn) -> None:
    with pytest.raises(ValueError):
        _engine(conn).allocate(["abc"], 5)
    with pytest.raises(ValueError):
        _engine(conn).allocate([], 5)


def test_preview_counts_available_without_writing(conn, insert_company, insert_rep) -> None:
    _seed_regions(conn, insert_company, per_region=4)
    insert_rep(conn, "Ana", "11")
    insert_rep(conn, "Bruno", "21")
    engine = _engine(conn)
    engine.allocate(CODES, 1)

    previews = engine.preview(CODES)

    assert [(p.representative.name, p.available) for p in previews] == [("Ana", 3), ("Bruno", 3)]
    assert len(_distributed(conn)) == 2


def test_preview_bad_area_code_is_zero(conn, insert_company) -> None:
    _seed_regions(conn, insert_company)
    rep = Representative(id=99, name="Zed", ddd="x1")
    [preview] = _engine(conn).preview(CODES, representatives=[rep])
    assert preview.available == 0


def test_matched_code_prefers_primary() -> None:
    assert matched_code({"primary_cnae": "6822600", "secondary_cnae": "6821801"}, CODES) == "6822600"
    assert matched_code({"primary_cnae": "1", "secondary_cnae": "9,6821801"}, CODES) == "6821801"
    assert matched_code({"primary_cnae": "1", "secondary_cnae": None}, CODES) is None


def test_concurrent_runs_on_separate_connections_stay_disjoint(
    db_file, insert_company, insert_rep
) -> None:
    seed = get_connection(str(db_file))
    try:
        ids = [
            insert_company(seed, phone_1=f"55(11)9{i:04d}-0000", primary_cnae=CODES[i % 2])
            for i in range(4)
        ]
        insert_rep(seed, "Ana", "11")
    finally:
        seed.close()

    barrier = threading.Barrier(2)
    results: list[list[int]] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def run_round() -> None:
        con = get_connection(str(db_file))
        try:
            barrier.wait(timeout=5)
            run = _engine(con).allocate(CODES, 3)
            with lock:
                results.append([c["id"] for c in run.allocations[0].companies])
        except BaseException as exc:  # reported by the main thread below
            with lock:
                errors.append(exc)
        finally:
            con.close()

    threads = [threading.Thread(target=run_round) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(results) == 2
    first, second = (set(r) for r in results)
    assert first.isdisjoint(second)
    assert sorted(len(r) for r in results) == [1, 3]

    check = get_connection(str(db_file))
    try:
        ledger = _distributed(check)
    finally:
        check.close()
    assert len(ledger) == len(set(ledger)) == 4
    assert set(ledger) == first | second == set(ids)
