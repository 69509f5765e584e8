"""Unit tests for cache plan decoding and change detection."""

import copy

import pytest

from gpu_node_agent.domain.entities.cache_plan import (
    CacheItemType,
    PlanDecodeError,
    decode_item,
    decode_plan,
    decode_update_requests,
)
from gpu_node_agent.domain.errors import PlanUnavailableError


@pytest.mark.unit
class TestDecodeItem:
    """Test decoding of individual plan items."""

    def test_image(self):
        item = decode_item({"type": "image", "name": "base", "image": {"ref": "r/base:1"}})
        assert item.item_type is CacheItemType.IMAGE
        assert item.image.ref == "r/base:1"
        assert item.reference == "r/base:1"
        assert item.applies_to_all_nodes

    def test_git_repo_defaults(self):
        item = decode_item({"type": "gitRepo", "name": "tools", "gitRepo": {"url": "https://g/t.git"}})
        assert item.git_repo.branch == "main"
        assert item.git_repo.path_name == "tools"
        assert item.git_repo.key == "https://g/t.git#main"

    def test_git_repo_explicit_path_name(self):
        item = decode_item({
            "type": "gitRepo",
            "name": "tools",
            "gitRepo": {"url": "https://g/t.git", "branch": "dev", "pathName": "tools-dev"},
        })
        assert item.git_repo.path_name == "tools-dev"
        assert item.git_repo.branch == "dev"

    def test_model(self):
        item = decode_item({"type": "model", "name": "llama", "model": {"repoId": "org/llama"}})
        assert item.item_type is CacheItemType.MODEL
        assert item.model.revision == "main"

    def test_scope(self):
        item = decode_item({"type": "image", "scope": "gpuNodes", "image": {"ref": "r/x:1"}})
        assert not item.applies_to_all_nodes
        item = decode_item({"type": "image", "scope": "allNodes", "image": {"ref": "r/x:1"}})
        assert item.applies_to_all_nodes

    @pytest.mark.parametrize("raw", [
        "image",
        {"type": "dataset"},
        {"type": "image"},
        {"type": "image", "image": {"ref": ""}},
        {"type": "gitRepo", "gitRepo": {"branch": "main"}},
        {"type": "gitRepo", "gitRepo": {"url": "https://g/t.git", "branch": 3}},
    ])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            decode_item(raw)


@pytest.mark.unit
class TestDecodePlan:
    """Test decoding of whole plans."""

    def test_items_in_declaration_order(self, cache_plan):
        plan = decode_plan(cache_plan)
        assert [item.name for item in plan.items] == ["base", "cuda", "tools", "models"]
        assert plan.decode_errors == []

    def test_bad_item_does_not_block_plan(self, cache_plan):
        cache_plan["spec"]["items"].insert(1, {"type": "image"})
        plan = decode_plan(cache_plan)
        assert len(plan.items) == 4
        assert len(plan.decode_errors) == 1
        assert "#1" in plan.decode_errors[0]

    def test_non_object_plan(self):
        with pytest.raises(PlanDecodeError):
            decode_plan(["not", "a", "plan"])
        assert issubclass(PlanDecodeError, PlanUnavailableError)

    def test_revision_prefers_generation(self):
        plan = decode_plan({"metadata": {"generation": 7, "resourceVersion": "99"}, "spec": {}})
        assert plan.revision == "7"
        plan = decode_plan({"metadata": {"resourceVersion": "99"}, "spec": {}})
        assert plan.revision == "99"


@pytest.mark.unit
class TestUpdateRequests:
    """Test update marker decoding."""

    def test_update_and_force_markers(self):
        requests = decode_update_requests({
            "canhazgpu.dev/update-repo-tools": "2024-05-01T00:00:00Z",
            "canhazgpu.dev/force-update-tools": "true",
            "canhazgpu.dev/update-repo-models": "2024-05-02T00:00:00Z",
            "unrelated": "x",
        })
        assert set(requests) == {"tools", "models"}
        assert requests["tools"].force
        assert not requests["models"].force
        assert requests["models"].requested_at == "2024-05-02T00:00:00Z"

    def test_force_marker_without_update_marker_is_ignored(self):
        assert decode_update_requests({"canhazgpu.dev/force-update-tools": "true"}) == {}


@pytest.mark.unit
class TestPlanHash:
    """Test hash and marker fingerprint sensitivity."""

    def test_hash_is_stable(self, cache_plan):
        assert decode_plan(cache_plan).compute_hash() == decode_plan(copy.deepcopy(cache_plan)).compute_hash()

    @pytest.mark.parametrize("mutate", [
        lambda p: p["spec"]["items"][0]["image"].update(ref="registry.local/base:2.0"),
        lambda p: p["spec"]["items"][2]["gitRepo"].update(branch="dev"),
        lambda p: p["spec"]["items"][3]["gitRepo"].update(pathName="elsewhere"),
        lambda p: p["spec"]["items"].pop(),
        lambda p: p["spec"]["items"].reverse(),
        lambda p: p["metadata"].update(generation=2),
    ])
    def test_any_spec_change_changes_hash(self, cache_plan, mutate):
        before = decode_plan(cache_plan).compute_hash()
        changed = copy.deepcopy(cache_plan)
        mutate(changed)
        assert decode_plan(changed).compute_hash() != before

    def test_markers_do_not_change_hash(self, cache_plan):
        before = decode_plan(cache_plan)
        marked = copy.deepcopy(cache_plan)
        marked["metadata"]["annotations"]["canhazgpu.dev/update-repo-tools"] = "now"
        after = decode_plan(marked)
        assert after.compute_hash() == before.compute_hash()
        assert after.markers_fingerprint() != before.markers_fingerprint()
