"""Tests for the similarity index backends."""

import uuid
from unittest.mock import MagicMock

from django.test import SimpleTestCase, override_settings

from apps.similarity.index import InMemoryIndex, QdrantIndex, get_index, set_index


class InMemoryIndexTests(SimpleTestCase):
    def setUp(self):
        self.index = InMemoryIndex(min_score=0.7, top_k=3)
        self.index.upsert("a", [1.0, 0.0], {"incident_type": "accident"})
        self.index.upsert("b", [0.9, 0.1], {"incident_type": "accident"})
        self.index.upsert("c", [1.0, 0.05], {"incident_type": "cyber"})
        self.index.upsert("d", [0.0, 1.0], {"incident_type": "accident"})

    def test_search_filters_by_category_and_threshold(self):
        results = self.index.search([1.0, 0.0], filters={"incident_type": "accident"})

        assert [r.incident_id for r in results] == ["a", "b"]
        assert results[0].score == 1.0
        assert results[1].metadata == {"incident_type": "accident"}

    def test_search_excludes_ids(self):
        results = self.index.search([1.0, 0.0], exclude_ids=["a"])
        assert [r.incident_id for r in results] == ["c", "b"]

    def test_search_limits_results(self):
        results = self.index.search([1.0, 0.0], k=1)
        assert len(results) == 1

    def test_zero_vector_matches_nothing(self):
        assert self.index.search([0.0, 0.0]) == []

    def test_upsert_replaces_existing_point(self):
        self.index.upsert("a", [0.0, 1.0], {"incident_type": "accident"})
        results = self.index.search([0.0, 1.0], filters={"incident_type": "accident"})
        assert {r.incident_id for r in results} == {"a", "d"}
        assert len(self.index) == 4

    @override_settings(SIMILARITY_MIN_SCORE=0.99, SIMILARITY_TOP_K=5)
    def test_defaults_from_settings(self):
        index = InMemoryIndex()
        assert index.min_score == 0.99
        assert index.top_k == 5


class QdrantIndexTests(SimpleTestCase):
    def setUp(self):
        self.client = MagicMock()
        self.client.collection_exists.return_value = False
        self.index = QdrantIndex(client=self.client, collection="test", vector_size=2, min_score=0.7, top_k=3)

    def test_upsert_creates_collection_once(self):
        incident_id = str(uuid.uuid4())
        self.index.upsert(incident_id, [0.1, 0.2], {"incident_type": "cyber"})
        self.index.upsert(incident_id, [0.1, 0.2], {"incident_type": "cyber"})

        self.client.create_collection.assert_called_once()
        assert self.client.upsert.call_count == 2
        point = self.client.upsert.call_args.kwargs["points"][0]
        assert point.id == incident_id
        assert point.payload == {"incident_type": "cyber"}

    def test_search_builds_filter_and_threshold(self):
        match = MagicMock(id="x", score=0.91234, payload={"incident_type": "cyber"})
        self.client.query_points.return_value.points = [match]

        results = self.index.search([0.1, 0.2], filters={"incident_type": "cyber"}, exclude_ids=["self-id"])

        kwargs = self.client.query_points.call_args.kwargs
        assert kwargs["collection_name"] == "test"
        assert kwargs["limit"] == 3
        assert kwargs["score_threshold"] == 0.7
        assert kwargs["query_filter"].must[0].key == "incident_type"
        assert kwargs["query_filter"].must_not[0].has_id == ["self-id"]
        assert results[0].incident_id == "x"
        assert results[0].score == 0.9123

    def test_zero_vector_skips_query(self):
        assert self.index.search([0.0, 0.0]) == []
        self.client.query_points.assert_not_called()


class GetIndexTests(SimpleTestCase):
    def tearDown(self):
        set_index(None)

    @override_settings(SIMILARITY_BACKEND="memory")
    def test_get_index_is_process_wide(self):
        set_index(None)
        first = get_index()
        assert isinstance(first, InMemoryIndex)
        assert get_index() is first

    @override_settings(SIMILARITY_BACKEND="bogus")
    def test_unknown_backend(self):
        set_index(None)
        with self.assertRaises(KeyError):
            get_index()
