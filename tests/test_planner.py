"""
Tests for the plan builder against an in-memory runtime.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from harbormaster.assembly import ActionKind, PlanBuilder, ResourceType, network_drift
from harbormaster.errors import ErrorKind, HarbormasterError, MultiError, is_kind
from harbormaster.executor import Executor
from harbormaster.filesets import SENTINEL_FILENAME, FileEntry, FileManifest, build_manifest, compute_tree_hash
from harbormaster.models import NetworkInfo, NetworkSpec, load_desired_state

from .fakes import demo_state, seed_demo

SENTINEL = f"/var/www/{SENTINEL_FILENAME}"


def _builder(runtime, parallel=True):
    return PlanBuilder(runtime, parallel=parallel, max_workers=4)


def _plan(runtime, desired, **kwargs):
    return asyncio.run(_builder(runtime).build_plan(desired, **kwargs))


def _remote_manifest(*entries):
    files = [FileEntry(path=p, size=s, sha256=h) for p, s, h in entries]
    return FileManifest(target_path="/var/www", files=files, tree_hash=compute_tree_hash(files))


def _summary(plan):
    return [(a.kind, a.resource_type, a.key, a.reason) for a in plan]


class TestNetworkDrift:
    """Tests for network_drift."""

    def test_unset_fields_are_not_compared(self):
        actual = NetworkInfo(name="n", driver="bridge", subnet="10.0.0.0/24", options={"mtu": "1500"})
        assert network_drift(NetworkSpec(name="n"), actual) == []

    def test_differing_fields(self):
        spec = NetworkSpec(name="n", driver="overlay", internal=True, subnet="10.1.0.0/24", options={"mtu": "9000"})
        actual = NetworkInfo(name="n", driver="bridge", subnet="10.0.0.0/24", options={"mtu": "1500"})
        assert network_drift(spec, actual) == ["driver", "options", "internal", "subnet"]

    def test_options_are_a_subset(self):
        spec = NetworkSpec(name="n", options={"mtu": "1500"})
        actual = NetworkInfo(name="n", options={"mtu": "1500", "extra": "x"})
        assert network_drift(spec, actual) == []


class TestBuildPlan:
    """Tests for PlanBuilder.build_plan."""

    def test_only_fileset_changes_when_everything_exists(self, runtime, desired):
        seed_demo(runtime, _remote_manifest(("a.txt", 1, "stale"), ("old.txt", 3, "o")))

        plan = _plan(runtime, desired)

        assert plan.count_actions() == (0, 1, 0)
        action = plan.actions[0]
        assert (action.kind, action.resource_type, action.key) == (ActionKind.UPDATE, ResourceType.FILESET, "site")
        diff = action.payload.diff
        assert [e.path for e in diff.to_create] == ["sub/b.txt"]
        assert [e.path for e in diff.to_update] == ["a.txt"]
        assert diff.to_delete == ["old.txt"]
        assert action.reason == "1 to create, 1 to update, 1 to delete"

    def test_everything_missing(self, runtime, desired):
        runtime.define_stack("default", "web", {"app": "h1"})

        plan = _plan(runtime, desired)

        assert _summary(plan) == [
            (ActionKind.CREATE, ResourceType.NETWORK, "demo-network", "missing"),
            (ActionKind.CREATE, ResourceType.VOLUME, "demo-data", "missing"),
            (ActionKind.CREATE, ResourceType.STACK, "web", "app: not running"),
            (ActionKind.UPDATE, ResourceType.FILESET, "site", "2 to create, 0 to update, 0 to delete"),
        ]
        assert plan.identifier("default") == "demo"

    def test_plan_apply_plan_is_empty(self, runtime, desired):
        runtime.define_stack("default", "web", {"app": "h1"})
        builder = _builder(runtime)
        executor = Executor(runtime, builder, parallel=True, max_workers=4)

        first = asyncio.run(builder.build_plan(desired))
        asyncio.run(executor.apply(first))
        second = asyncio.run(builder.build_plan(desired))
        third = asyncio.run(builder.build_plan(desired))

        assert first.count_actions() == (3, 1, 0)
        assert second.count_actions() == (0, 0, 0)
        assert third.count_actions() == (0, 0, 0)
        assert str(second).startswith("No changes.")

    def test_volume_without_sentinel_syncs_everything(self, runtime, desired):
        seed_demo(runtime)

        plan = _plan(runtime, desired)

        assert _summary(plan) == [
            (ActionKind.UPDATE, ResourceType.FILESET, "site", "2 to create, 0 to update, 0 to delete"),
        ]

    def test_sentinel_not_read_without_volume(self, runtime, desired):
        runtime.define_stack("default", "web", {"app": "h1"})
        local = build_manifest(desired.contexts[0].filesets[0].source, "/var/www")
        runtime.write_file("default", "demo-data", SENTINEL, local.to_json().encode())

        plan = _plan(runtime, desired)

        fileset = plan.actions[-1]
        assert fileset.kind == ActionKind.UPDATE
        assert fileset.payload.remote.is_empty()

    @pytest.mark.parametrize("content", [b"{not json", b"\xff\xfe{}", b'{"files": "nope"}'])
    def test_unreadable_sentinel_means_full_sync(self, runtime, desired, content, caplog):
        seed_demo(runtime)
        runtime.write_file("default", "demo-data", SENTINEL, content)

        plan = _plan(runtime, desired)

        assert _summary(plan) == [
            (ActionKind.UPDATE, ResourceType.FILESET, "site", "2 to create, 0 to update, 0 to delete"),
        ]
        assert plan.actions[0].payload.remote.is_empty()
        assert "unreadable sentinel for fileset site" in caplog.text

    def test_outdated_sentinel_without_content_changes(self, runtime, desired):
        local = build_manifest(desired.contexts[0].filesets[0].source, "/var/www")
        seed_demo(runtime, FileManifest(target_path="/var/www", files=local.files))

        plan = _plan(runtime, desired)

        assert _summary(plan) == [(ActionKind.UPDATE, ResourceType.FILESET, "site", "sentinel out of date")]
        assert plan.actions[0].payload.diff.is_empty()

    def test_stack_drift(self, runtime, desired):
        seed_demo(runtime, build_manifest(desired.contexts[0].filesets[0].source, "/var/www"))
        runtime.define_stack("default", "web", {"app": "h2", "worker": "w1"})

        plan = _plan(runtime, desired)

        assert _summary(plan) == [
            (ActionKind.UPDATE, ResourceType.STACK, "web", "app: config drift, worker: not running"),
        ]
        change = plan.actions[0].payload
        assert change.project == "web"
        assert [s.service for s in change.services] == ["app", "worker"]

    def test_stack_environment_is_resolved(self, runtime, site_dir, temp_dir):
        runtime.define_stack("default", "web", {"app": "h1"})
        desired = load_desired_state({
            "environment": {"inline": {"LEVEL": "root", "ROOT": "1"}},
            "contexts": [{
                "name": "default",
                "identifier": "demo",
                "stacks": [{"name": "web", "root": str(temp_dir), "environment": {"inline": {"LEVEL": "stack"}}}],
            }],
        })

        plan = _plan(runtime, desired)

        assert runtime.envs["web"] == {"LEVEL": "stack", "ROOT": "1"}
        assert plan.actions[0].payload.env == {"LEVEL": "stack", "ROOT": "1"}

    def test_sequential_and_parallel_agree(self, runtime, site_dir, temp_dir):
        desired = load_desired_state({"contexts": [
            {"name": name, "identifier": "demo", "networks": [{"name": "n"}], "volumes": [{"name": "v"}],
             "filesets": [{"name": "site", "source": str(site_dir), "target_volume": "v", "target_path": "/srv"}]}
            for name in ("zeta", "alpha", "mid")
        ]})

        parallel = asyncio.run(_builder(runtime, parallel=True).build_plan(desired))
        sequential = asyncio.run(_builder(runtime, parallel=False).build_plan(desired))

        assert [(a.context, a.key, a.kind) for a in parallel] == [(a.context, a.key, a.kind) for a in sequential]
        assert parallel.contexts() == ["alpha", "mid", "zeta"]

    def test_cancelled_before_start(self, runtime, desired):
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(HarbormasterError) as exc_info:
            _plan(runtime, desired, cancel=cancel)

        assert is_kind(exc_info.value, ErrorKind.CANCELLED)

    def test_discovery_failure_is_unavailable(self, runtime, desired):
        runtime.list_networks = AsyncMock(side_effect=ConnectionError("daemon down"))

        with pytest.raises(HarbormasterError) as exc_info:
            _plan(runtime, desired)

        assert exc_info.value.kind == ErrorKind.UNAVAILABLE


class TestNetworkPolicies:
    """Mismatch policies for existing networks."""

    def _desired(self, site_dir, temp_dir, policy):
        return demo_state(
            site_dir, temp_dir, networks=[{"name": "demo-network", "driver": "overlay", "mismatch": policy}]
        )

    def _runtime(self, runtime, site_dir):
        seed_demo(runtime, build_manifest(site_dir, "/var/www"))
        runtime.add_network("default", "demo-network", driver="bridge")

    def test_recreate(self, runtime, site_dir, temp_dir):
        self._runtime(runtime, site_dir)

        plan = _plan(runtime, self._desired(site_dir, temp_dir, "recreate"))

        action = plan.actions[0]
        assert (action.kind, action.reason) == (ActionKind.UPDATE, "recreate: driver differ")
        assert action.is_recreate
        assert action.payload.recreate

    def test_ignore(self, runtime, site_dir, temp_dir):
        self._runtime(runtime, site_dir)

        plan = _plan(runtime, self._desired(site_dir, temp_dir, "ignore"))

        assert plan.is_empty()

    def test_error(self, runtime, site_dir, temp_dir):
        self._runtime(runtime, site_dir)

        with pytest.raises(HarbormasterError) as exc_info:
            _plan(runtime, self._desired(site_dir, temp_dir, "error"))

        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert "demo-network" in str(exc_info.value.__cause__)

    def test_errors_from_every_context_are_reported(self, runtime):
        desired = load_desired_state({"contexts": [
            {"name": name, "identifier": "demo", "networks": [{"name": "n", "driver": "overlay", "mismatch": "error"}]}
            for name in ("a", "b", "healthy")
        ]})
        runtime.add_network("a", "n", driver="bridge")
        runtime.add_network("b", "n", driver="macvlan")

        with pytest.raises(HarbormasterError) as exc_info:
            _plan(runtime, desired)

        assert exc_info.value.kind == ErrorKind.CONFLICT
        cause = exc_info.value.__cause__
        assert isinstance(cause, MultiError)
        assert len(cause.errors) == 2
        assert "context[a]" in str(cause) and "context[b]" in str(cause)


class TestPruneAndDestroyPlans:
    """Tests for prune and destroy plan building."""

    def _leftovers(self, runtime, site_dir):
        seed_demo(runtime, build_manifest(site_dir, "/var/www"))
        runtime.add_network("default", "legacy-net")
        runtime.add_volume("default", "old-vol")
        runtime.add_volume("default", "foreign", identifier="someone-else")
        runtime.add_service("default", "web", "legacy", "x")
        runtime.add_service("default", "old-stack", "db", "d")

    def test_prune_plan(self, runtime, desired, site_dir):
        self._leftovers(runtime, site_dir)

        plan = asyncio.run(_builder(runtime).build_prune_plan(desired))

        assert _summary(plan) == [
            (ActionKind.DELETE, ResourceType.STACK, "web", "orphaned services: legacy"),
            (ActionKind.DELETE, ResourceType.STACK, "old-stack", "not declared"),
            (ActionKind.DELETE, ResourceType.VOLUME, "old-vol", "not declared"),
            (ActionKind.DELETE, ResourceType.NETWORK, "legacy-net", "not declared"),
        ]
        web, old_stack = plan.actions[0].payload, plan.actions[1].payload
        assert web.remove == ("legacy",) and not web.whole
        assert old_stack.whole

    def test_stack_deletions_are_keyed_by_project(self, runtime, site_dir, temp_dir):
        desired = demo_state(site_dir, temp_dir, stacks=[{"name": "foo", "root": str(temp_dir), "project": "bar"}])
        seed_demo(runtime, build_manifest(site_dir, "/var/www"))
        runtime.define_stack("default", "bar", {"app": "h1"})
        runtime.add_service("default", "bar", "app", "h1")
        runtime.add_service("default", "bar", "legacy", "x")
        runtime.add_service("default", "foo", "db", "d")

        plan = asyncio.run(_builder(runtime).build_prune_plan(desired))

        stacks = [(a.key, a.reason, a.payload.project) for a in plan if a.resource_type == ResourceType.STACK]
        assert stacks == [
            ("bar", "orphaned services: legacy", "bar"),
            ("foo", "not declared", "foo"),
            ("web", "not declared", "web"),
        ]

    def test_stacks_sharing_a_project_conflict(self, runtime, site_dir, temp_dir):
        desired = demo_state(site_dir, temp_dir, stacks=[
            {"name": "one", "root": str(temp_dir), "project": "shared"},
            {"name": "two", "root": str(temp_dir), "project": "shared"},
        ])
        runtime.define_stack("default", "shared", {"app": "h1"})
        runtime.add_service("default", "shared", "app", "h1")
        runtime.add_service("default", "shared", "legacy", "x")

        with pytest.raises(HarbormasterError) as exc_info:
            asyncio.run(_builder(runtime).build_prune_plan(desired))

        assert is_kind(exc_info.value, ErrorKind.CONFLICT)
        assert "shared" in str(exc_info.value)

    def test_plan_with_prune_lists_both(self, runtime, desired, site_dir):
        self._leftovers(runtime, site_dir)
        runtime.define_stack("default", "web", {"app": "h2"})

        plan = _plan(runtime, desired, include_prune=True)

        assert plan.count_actions() == (0, 1, 4)
        assert [a.is_delete for a in plan] == [False, True, True, True, True]

    def test_destroy_plan(self, runtime, desired, site_dir):
        seed_demo(runtime, _remote_manifest(("a.txt", 1, "x"), ("gone.txt", 1, "y")))

        plan = asyncio.run(_builder(runtime).build_destroy_plan(desired))

        assert _summary(plan) == [
            (ActionKind.DELETE, ResourceType.FILESET, "site", "destroy"),
            (ActionKind.DELETE, ResourceType.STACK, "web", "destroy"),
            (ActionKind.DELETE, ResourceType.VOLUME, "demo-data", "destroy"),
            (ActionKind.DELETE, ResourceType.NETWORK, "demo-network", "destroy"),
        ]
        assert [e.path for e in plan.actions[0].payload.remote.files] == ["a.txt", "gone.txt"]

    def test_destroy_plan_skips_filesets_without_volume(self, runtime, desired):
        runtime.add_network("default", "demo-network")

        plan = asyncio.run(_builder(runtime).build_destroy_plan(desired))

        assert _summary(plan) == [(ActionKind.DELETE, ResourceType.NETWORK, "demo-network", "destroy")]
