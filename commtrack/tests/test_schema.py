"""
Index Schema Test Suite: ESR Coverage and Query-Plan Parsing

Every query shape issued by the stores must have a supporting index, and
explain output must be classified correctly as index-backed or a
collection scan.

Run: python -m pytest commtrack/tests/test_schema.py -v
"""

from __future__ import annotations

from commtrack.storage.plan import QueryPlan
from commtrack.storage.schema import (
    BUCKET_INDEXES,
    SCHEDULE_INDEXES,
    IndexSpec,
    find_supporting_index,
)


def index_named(indexes, name: str) -> IndexSpec:
    return next(spec for spec in indexes if spec.name == name)


# =============================================================================
# ESR RULE
# =============================================================================
class TestIndexSpecSupports:

    def test_equality_prefix_any_order(self):
        spec = IndexSpec("ab", (("a", 1), ("b", 1), ("c", 1)))
        assert spec.supports(equality=["b", "a"])
        assert not spec.supports(equality=["a", "c"])

    def test_sort_must_follow_equality(self):
        spec = IndexSpec("esr", (("u", 1), ("s", -1), ("r", 1)))
        assert spec.supports(equality=["u"], sort=[("s", -1)], range_fields=["r"])
        assert spec.supports(equality=["u"], sort=[("s", 1)])
        assert not spec.supports(equality=["u"], sort=[("r", 1)])

    def test_range_before_sort_is_rejected(self):
        spec = IndexSpec("ers", (("u", 1), ("r", 1), ("s", -1)))
        assert not spec.supports(equality=["u"], sort=[("s", -1)], range_fields=["r"])

    def test_mixed_directions_must_all_match_or_all_reverse(self):
        spec = IndexSpec("m", (("a", 1), ("b", -1)))
        assert spec.supports(sort=[("a", -1), ("b", 1)])
        assert not spec.supports(sort=[("a", 1), ("b", 1)])

    def test_range_on_sort_field(self):
        spec = index_named(SCHEDULE_INDEXES, "schedule_segment")
        assert spec.supports(
            equality=["tracking_id", "template_id", "planned_date_hour"],
            sort=[("user_id", 1)],
            range_fields=["user_id"],
        )

    def test_create_kwargs(self):
        assert index_named(BUCKET_INDEXES, "user_day").create_kwargs() == {
            "name": "user_day", "unique": True,
        }
        assert index_named(BUCKET_INDEXES, "expire_at").create_kwargs() == {
            "name": "expire_at", "expireAfterSeconds": 0,
        }


# =============================================================================
# QUERY SHAPE COVERAGE
# =============================================================================
class TestQueryShapeCoverage:

    def test_get_day(self):
        spec = find_supporting_index(BUCKET_INDEXES, equality=["user_id", "day"])
        assert spec is not None and spec.unique

    def test_update_event_status(self):
        spec = find_supporting_index(
            BUCKET_INDEXES,
            equality=[
                "user_id",
                "events.dispatch_time",
                "events.template_id",
                "events.tracking_id",
            ],
        )
        assert spec is not None and spec.name == "event_lookup"

    def test_campaign_scan(self):
        spec = find_supporting_index(
            BUCKET_INDEXES,
            equality=["day", "events.template_id", "events.tracking_id"],
            range_fields=["events.dispatch_time", "user_id"],
        )
        assert spec is not None and spec.name == "campaign_window"

    def test_catalogue_lookups(self):
        assert find_supporting_index(BUCKET_INDEXES, equality=["events.template_id"])
        assert find_supporting_index(BUCKET_INDEXES, equality=["events.tracking_id"])

    def test_eligible_records(self):
        spec = find_supporting_index(SCHEDULE_INDEXES, equality=["user_id"])
        assert spec is not None and spec.name == "user"

    def test_user_schedule(self):
        spec = find_supporting_index(
            SCHEDULE_INDEXES,
            equality=["user_id"],
            sort=[("final_score", -1)],
            range_fields=["planned_date_hour"],
        )
        assert spec is not None and spec.name == "user_schedule_esr"

    def test_retention_is_ttl_index(self):
        ttl = [spec for spec in BUCKET_INDEXES if spec.expire_after_seconds is not None]
        assert [spec.fields for spec in ttl] == [("expire_at",)]


# =============================================================================
# EXPLAIN PARSING
# =============================================================================
class TestQueryPlan:

    def test_find_with_index(self):
        plan = QueryPlan.from_explain({
            "queryPlanner": {"winningPlan": {
                "stage": "FETCH",
                "inputStage": {"stage": "IXSCAN", "indexName": "user_day"},
            }},
            "executionStats": {"totalDocsExamined": 1, "totalKeysExamined": 1, "nReturned": 1},
        })
        assert plan.uses_index
        assert not plan.is_collection_scan
        assert plan.index_name == "user_day"
        assert plan.docs_examined == 1

    def test_collection_scan(self):
        plan = QueryPlan.from_explain({
            "queryPlanner": {"winningPlan": {"stage": "COLLSCAN"}},
            "executionStats": {"totalDocsExamined": 50000, "nReturned": 3},
        })
        assert plan.is_collection_scan
        assert plan.index_name is None
        assert plan.to_log_fields()["docs_examined"] == 50000

    def test_aggregate_cursor_stage(self):
        plan = QueryPlan.from_explain({"stages": [
            {"$cursor": {
                "queryPlanner": {"winningPlan": {
                    "stage": "PROJECTION_COVERED",
                    "inputStage": {"stage": "IXSCAN", "indexName": "campaign_window"},
                }},
                "executionStats": {"totalKeysExamined": 12, "nReturned": 11},
            }},
            {"$group": {"_id": "$user_id"}},
        ]})
        assert plan.index_name == "campaign_window"
        assert plan.keys_examined == 12
        assert plan.returned == 11

    def test_slot_engine_query_plan(self):
        plan = QueryPlan.from_explain({
            "queryPlanner": {"winningPlan": {"queryPlan": {
                "stage": "GROUP",
                "inputStage": {"stage": "DISTINCT_SCAN", "indexName": "template_id"},
            }}},
        })
        assert plan.stages == ("GROUP", "DISTINCT_SCAN")
        assert plan.uses_index

    def test_or_plan_children(self):
        plan = QueryPlan.from_explain({
            "queryPlanner": {"winningPlan": {
                "stage": "OR",
                "inputStages": [
                    {"stage": "IXSCAN", "indexName": "user"},
                    {"stage": "COLLSCAN"},
                ],
            }},
        })
        assert plan.is_collection_scan
        assert plan.index_names == ("user",)
