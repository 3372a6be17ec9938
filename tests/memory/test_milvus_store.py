import asyncio
from types import SimpleNamespace

import pytest

from engram.errors import ProviderUnavailable
from engram.memory.models import VectorRecord
from engram.memory.vector import milvus_store
from engram.memory.vector.milvus_store import MilvusVectorStore, build_expr


class FakeCollection:
    registry: dict = {}

    def __init__(self, name, schema=None, using=None):
        existing = FakeCollection.registry.get(name)
        if existing is not None:
            self.__dict__ = existing.__dict__
            return
        self.name = name
        self.schema = schema
        self.indexes = []
        self.deletes = []
        self.inserts = []
        self.searches = []
        self.loaded = 0
        self.rows = {}
        FakeCollection.registry[name] = self

    def has_index(self):
        return bool(self.indexes)

    def create_index(self, field, params):
        self.indexes.append((field, params))

    def load(self):
        self.loaded += 1

    def delete(self, expr):
        self.deletes.append(expr)

    def insert(self, data):
        self.inserts.append(data)
        ids, vectors, metadata = data
        for i, v, m in zip(ids, vectors, metadata):
            self.rows[i] = (v, m)

    def flush(self):
        pass

    @property
    def num_entities(self):
        return len(self.rows)

    def search(self, data, anns_field, param, limit, expr, output_fields, consistency_level):
        self.searches.append({"anns_field": anns_field, "param": param, "limit": limit, "expr": expr})
        q = data[0]
        hits = []
        for rid, (v, m) in self.rows.items():
            score = sum(a * b for a, b in zip(q, v))
            hits.append(SimpleNamespace(id=rid, score=score, entity={"metadata": m}))
        hits.sort(key=lambda h: h.score, reverse=True)
        return [hits[:limit]]

    def query(self, expr, output_fields, limit, offset):
        ids = sorted(self.rows)[offset : offset + limit]
        return [{"id": i} for i in ids]


@pytest.fixture
def fake_milvus(monkeypatch):
    FakeCollection.registry = {}
    connects = []

    monkeypatch.setattr(milvus_store, "Collection", FakeCollection)
    monkeypatch.setattr(
        milvus_store, "CollectionSchema",
        lambda fields, description="": SimpleNamespace(fields=fields, description=description),
    )
    monkeypatch.setattr(
        milvus_store, "FieldSchema",
        lambda name, dtype, **kw: SimpleNamespace(name=name, dtype=dtype, params=kw),
    )
    monkeypatch.setattr(
        milvus_store, "connections",
        SimpleNamespace(
            connect=lambda **kw: connects.append(kw),
            disconnect=lambda alias: connects.append({"disconnect": alias}),
        ),
    )
    monkeypatch.setattr(
        milvus_store, "utility",
        SimpleNamespace(
            has_collection=lambda name, using=None: name in FakeCollection.registry,
            get_server_version=lambda using=None: "2.4.0",
        ),
    )
    return connects


def test_build_expr_joins_equality_clauses():
    assert build_expr(None) == ""
    assert build_expr({"type": "bugfix"}) == 'metadata["type"] == "bugfix"'
    assert build_expr({"type": "bugfix", "project": "p"}) == (
        'metadata["type"] == "bugfix" and metadata["project"] == "p"'
    )


def test_initialize_creates_flat_cosine_collection(fake_milvus):
    store = MilvusVectorStore(host="milvus.test", port=19530)
    asyncio.run(store.initialize("cm_proj", 3))
    asyncio.run(store.initialize("cm_proj", 3))

    col = FakeCollection.registry["cm_proj"]
    fields = {f.name: f for f in col.schema.fields}
    assert fields["id"].dtype == milvus_store.DataType.VARCHAR
    assert fields["id"].params["is_primary"] is True
    assert fields["vector"].params["dim"] == 3
    assert fields["metadata"].dtype == milvus_store.DataType.JSON
    assert col.indexes == [("vector", {"index_type": "FLAT", "metric_type": "COSINE", "params": {}})]
    assert fake_milvus == [{"alias": "engram", "uri": "http://milvus.test:19530"}]


def test_upsert_replaces_then_search_filters(fake_milvus):
    async def _run():
        store = MilvusVectorStore()
        await store.initialize("cm_proj", 2)
        await store.upsert("cm_proj", [
            VectorRecord(id="obs_1", vector=[1.0, 0.0], metadata={"type": "bugfix"}),
            VectorRecord(id="obs_2", vector=[0.0, 1.0], metadata={"type": "feature"}),
        ])
        hits = await store.search("cm_proj", [1.0, 0.0], limit=1, filter={"type": "bugfix"})
        info = await store.collection_info("cm_proj")
        ids = await store.ids("cm_proj")
        await store.close()
        await store.close()
        return hits, info, ids

    hits, info, ids = asyncio.run(_run())
    col = FakeCollection.registry["cm_proj"]
    assert col.deletes == ['id in ["obs_1", "obs_2"]']
    assert col.inserts[0][0] == ["obs_1", "obs_2"]
    assert col.searches[0]["expr"] == 'metadata["type"] == "bugfix"'
    assert col.searches[0]["param"]["metric_type"] == "COSINE"
    assert [(h.id, h.metadata) for h in hits] == [("obs_1", {"type": "bugfix"})]
    assert (info.count, info.dimension) == (2, 2)
    assert ids == ["obs_1", "obs_2"]
    assert fake_milvus[-1] == {"disconnect": "engram"}
    assert fake_milvus.count({"disconnect": "engram"}) == 1


def test_missing_collection_is_empty(fake_milvus):
    async def _run():
        store = MilvusVectorStore()
        return (
            await store.search("cm_none", [1.0], limit=3),
            await store.collection_info("cm_none"),
            await store.ids("cm_none"),
        )

    assert asyncio.run(_run()) == ([], None, [])


def test_milvus_errors_become_provider_unavailable(fake_milvus, monkeypatch):
    def boom(name, using=None):
        raise milvus_store.MilvusException(message="server down")

    monkeypatch.setattr(milvus_store.utility, "has_collection", boom)
    store = MilvusVectorStore()
    with pytest.raises(ProviderUnavailable):
        asyncio.run(store.initialize("cm_proj", 2))


def test_is_available_reflects_server(fake_milvus, monkeypatch):
    assert asyncio.run(MilvusVectorStore().is_available()) is True

    def down(using=None):
        raise ConnectionError("no route")

    monkeypatch.setattr(milvus_store.utility, "get_server_version", down)
    assert asyncio.run(MilvusVectorStore(alias="other").is_available()) is False
