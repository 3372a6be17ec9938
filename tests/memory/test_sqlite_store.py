import asyncio

import numpy as np
import pytest

from engram.errors import DimensionMismatch
from engram.memory.models import VectorRecord
from engram.memory.sql import db
from engram.memory.vector import cosine_similarity, matches_filter, sanitize_table_name
from engram.memory.vector.sqlite_store import SqliteVectorStore

COLL = "cm_test_project"


def _store():
    return SqliteVectorStore(conn=db.connect(":memory:"))


def _rec(rid, vec, **meta):
    return VectorRecord(id=rid, vector=np.asarray(vec, dtype=np.float32), metadata=meta)


def test_cosine_bounds_and_self_similarity():
    rng = np.random.default_rng(7)
    for _ in range(50):
        a = rng.normal(size=16)
        b = rng.normal(size=16)
        assert -1.0 <= cosine_similarity(a, b) <= 1.0
        unit = a / np.linalg.norm(a)
        assert cosine_similarity(unit, unit) == pytest.approx(1.0, abs=1e-6)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_table_name_sanitization():
    assert sanitize_table_name("cm_My-Proj/x") == "vec_cm_my_proj_x"
    assert sanitize_table_name("a b;drop") == "vec_abdrop"


def test_matches_filter_requires_all_keys_by_string_equality():
    meta = {"type": "bugfix", "observation_id": 3}
    assert matches_filter(meta, None)
    assert matches_filter(meta, {"type": "bugfix"})
    assert matches_filter(meta, {"observation_id": "3"})
    assert not matches_filter(meta, {"type": "feature"})
    assert not matches_filter(meta, {"project": "x"})


def test_upsert_is_idempotent_and_overwrites():
    async def _run():
        store = _store()
        await store.initialize(COLL, 3)
        await store.upsert(COLL, [_rec("obs_1", [1, 0, 0], title="old")])
        await store.upsert(COLL, [_rec("obs_1", [0, 1, 0], title="new")])
        await store.upsert(COLL, [_rec("obs_1", [0, 1, 0], title="new")])
        info = await store.collection_info(COLL)
        hits = await store.search(COLL, [0, 1, 0], limit=5)
        return info, hits

    info, hits = asyncio.run(_run())
    assert info.count == 1 and info.dimension == 3
    assert len(hits) == 1
    assert hits[0].metadata["title"] == "new"
    assert hits[0].score == pytest.approx(1.0)


def test_search_ranks_by_cosine_and_applies_filter_and_limit():
    async def _run():
        store = _store()
        await store.initialize(COLL, 2)
        await store.upsert(
            COLL,
            [
                _rec("a", [1, 0], type="bugfix"),
                _rec("b", [0.8, 0.6], type="feature"),
                _rec("c", [0, 1], type="bugfix"),
                _rec("d", [-1, 0], type="bugfix"),
            ],
        )
        ranked = await store.search(COLL, [1, 0], limit=10)
        filtered = await store.search(COLL, [1, 0], limit=10, filter={"type": "bugfix"})
        top2 = await store.search(COLL, [1, 0], limit=2)
        return ranked, filtered, top2

    ranked, filtered, top2 = asyncio.run(_run())
    assert [h.id for h in ranked] == ["a", "b", "c", "d"]
    assert ranked[-1].score == pytest.approx(-1.0)
    assert [h.id for h in filtered] == ["a", "c", "d"]
    assert [h.id for h in top2] == ["a", "b"]


def test_absent_collection_is_empty_not_error():
    async def _run():
        store = _store()
        return (
            await store.search("cm_nothing", [1.0, 0.0], limit=3),
            await store.collection_info("cm_nothing"),
            await store.ids("cm_nothing"),
        )

    hits, info, ids = asyncio.run(_run())
    assert hits == [] and info is None and ids == []


def test_dimension_mismatch_is_rejected():
    async def _run():
        store = _store()
        await store.initialize(COLL, 3)
        with pytest.raises(DimensionMismatch) as up:
            await store.upsert(COLL, [_rec("x", [1, 0])])
        with pytest.raises(DimensionMismatch):
            await store.search(COLL, [1, 0, 0, 0], limit=1)
        return up.value, await store.collection_info(COLL)

    err, info = asyncio.run(_run())
    assert err.expected == 3 and err.actual == 2
    assert info.count == 0


def test_failed_upsert_rolls_back_whole_batch():
    async def _run():
        store = _store()
        await store.initialize(COLL, 2)
        bad = VectorRecord(id=["not", "bindable"], vector=[0.0, 1.0])
        with pytest.raises(Exception):
            await store.upsert(COLL, [_rec("good", [1, 0]), bad])
        return await store.ids(COLL)

    assert asyncio.run(_run()) == []


def test_malformed_rows_are_skipped(caplog):
    async def _run():
        store = _store()
        await store.initialize(COLL, 2)
        await store.upsert(COLL, [_rec("ok", [1, 0], type="bugfix")])
        conn = store._connection()
        table = sanitize_table_name(COLL)
        conn.execute(
            f"INSERT INTO {table} (id, vector, metadata) VALUES (?, ?, ?)",
            ("bad-json", np.asarray([1, 0], dtype="<f4").tobytes(), "{not json"),
        )
        conn.execute(
            f"INSERT INTO {table} (id, vector, metadata) VALUES (?, ?, ?)",
            ("bad-dim", np.asarray([1, 0, 0], dtype="<f4").tobytes(), "{}"),
        )
        return await store.search(COLL, [1, 0], limit=10)

    hits = asyncio.run(_run())
    assert [h.id for h in hits] == ["ok"]
    assert "bad-json" in caplog.text and "bad-dim" in caplog.text


def test_delete_and_ids():
    async def _run():
        store = _store()
        await store.initialize(COLL, 2)
        await store.upsert(COLL, [_rec("obs_1", [1, 0]), _rec("obs_2", [0, 1]), _rec("obs_3", [1, 1])])
        await store.delete(COLL, ["obs_2", "missing"])
        return await store.ids(COLL), await store.is_available()

    ids, available = asyncio.run(_run())
    assert ids == ["obs_1", "obs_3"]
    assert available is True


def test_file_backed_store_persists(tmp_path):
    path = str(tmp_path / "vectors.db")

    async def _write():
        store = SqliteVectorStore(path=path)
        await store.initialize(COLL, 2)
        await store.upsert(COLL, [_rec("obs_9", [0.6, 0.8], title="kept")])
        await store.close()

    async def _read():
        store = SqliteVectorStore(path=path)
        try:
            return await store.search(COLL, [0.6, 0.8], limit=1)
        finally:
            await store.close()

    asyncio.run(_write())
    hits = asyncio.run(_read())
    assert hits[0].id == "obs_9" and hits[0].metadata == {"title": "kept"}
