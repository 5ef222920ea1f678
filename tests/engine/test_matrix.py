"""Tests for the per-domain decision tables in keeper.engine.matrix."""

from __future__ import annotations

import pytest

import keeper.engine.config
import keeper.engine.matrix
import keeper.engine.registry
import keeper.errors
from keeper.engine.models import ChangeItem, Domain, Kind, Mode, Operation, Outcome, ProposedChange


def _item(domain, kind, name, operation="create", scope=None, **metadata):
    return ChangeItem(
        domain=Domain(domain),
        kind=Kind(kind),
        name=name,
        operation=Operation(operation),
        scope=scope,
        metadata=metadata,
    )


def _run(item, registry, mode=Mode.GROWTH, config=None):
    config = config or keeper.engine.config.KeeperConfig()
    return keeper.engine.matrix.evaluate_item(item, registry, mode, config)


class TestFrontend:
    def test_reuse_without_variant(self, registry) -> None:
        verdict = _run(_item("frontend", "component", "Button", "reuse"), registry)
        assert verdict.outcome is Outcome.USE
        assert [s.name for s in verdict.reused] == ["Button"]

    @pytest.mark.parametrize("variant", ["primary", "Secondary", "DANGER"])
    def test_existing_variant_is_never_extended(self, registry, variant) -> None:
        verdict = _run(
            _item("frontend", "component", "Button", "extend", variant=variant), registry
        )
        assert verdict.outcome is Outcome.USE_VARIANT
        assert verdict.extensions == []
        assert registry.lookup(Kind.COMPONENT, "Button").usage_count == 0

    def test_new_variant_extends(self, registry) -> None:
        verdict = _run(
            _item("frontend", "component", "Button", variant="warning"), registry
        )
        assert verdict.outcome is Outcome.EXTEND
        [ext] = verdict.extensions
        assert (ext.action, ext.name, ext.value) == ("add_variant", "Button", "warning")
        assert [f.pattern for f in verdict.forbidden] == ["WarningButton"]
        assert verdict.new_seeds == []
        # Usage is only recorded by the store.
        assert registry.lookup(Kind.COMPONENT, "Button").usage_count == 0

    def test_second_extension_promotes(self, registry) -> None:
        registry.merge_usage({(Kind.COMPONENT, "Button", None): 1})
        verdict = _run(_item("frontend", "component", "Button", variant="info"), registry)
        assert verdict.outcome is Outcome.EXTEND
        assert [d.action for d in verdict.directives] == ["promote"]
        [seed] = verdict.new_seeds
        assert seed.name == "Button"
        assert seed.promoted

    def test_forbidden_extension_rejects(self, registry) -> None:
        verdict = _run(_item("frontend", "component", "Button", variant="ghost"), registry)
        assert verdict.outcome is Outcome.REJECT
        assert verdict.terminal

    def test_frozen_component_rejects(self, registry) -> None:
        verdict = _run(_item("frontend", "component", "Modal", variant="large"), registry)
        assert verdict.outcome is Outcome.REJECT

    def test_controlled_component_grows_outside_conservation(self, registry) -> None:
        item = _item("frontend", "component", "Card", "extend", variant="wide")
        assert _run(item, registry).outcome is Outcome.EXTEND
        assert _run(item, registry, Mode.CONSERVATION).outcome is Outcome.REJECT

    def test_unknown_component_is_created(self, registry) -> None:
        verdict = _run(
            _item("frontend", "component", "Tooltip", variants=["dark"]), registry
        )
        assert verdict.outcome is Outcome.CREATE
        [seed] = verdict.new_seeds
        assert seed.values == ("dark",)

    def test_reusing_unknown_component_rejects(self, registry) -> None:
        verdict = _run(_item("frontend", "component", "Tooltip", "reuse"), registry)
        assert verdict.outcome is Outcome.REJECT

    def test_extending_unknown_component_rejects(self, registry) -> None:
        verdict = _run(_item("frontend", "component", "Carousel", "extend"), registry)
        assert verdict.outcome is Outcome.REJECT
        assert "to extend" in verdict.reason
        assert verdict.new_seeds == []

    def test_seeding_downgrades_reject_to_warn(self, registry) -> None:
        verdict = _run(
            _item("frontend", "component", "Button", variant="ghost"),
            registry,
            Mode.SEEDING,
        )
        assert verdict.outcome is Outcome.WARN
        assert not verdict.terminal
        assert verdict.extensions[0].value == "ghost"


class TestBackend:
    def test_existing_route_and_method(self, registry) -> None:
        verdict = _run(
            _item("backend", "route", "/api/users", "reuse", method="get"), registry
        )
        assert verdict.outcome is Outcome.USE
        assert verdict.followup is Outcome.PROCEED

    def test_new_method_on_existing_route(self, registry) -> None:
        verdict = _run(
            _item("backend", "route", "/api/users", "extend", method="DELETE"), registry
        )
        assert verdict.outcome is Outcome.EXTEND
        assert verdict.extensions[0].value == "DELETE"

    def test_compatible_change_to_existing_resource(self, registry) -> None:
        verdict = _run(
            _item("backend", "route", "/api/users/{id}/avatar", method="GET"), registry
        )
        assert verdict.outcome is Outcome.MODIFY
        assert verdict.new_seeds[0].name == "/api/users/{id}/avatar"

    def test_new_resource_follows_rest_shape(self, registry) -> None:
        verdict = _run(
            _item("backend", "route", "/api/orders", method="GET", action="list"),
            registry,
        )
        assert verdict.outcome is Outcome.APPROVE
        assert verdict.followup is Outcome.PROCEED

    @pytest.mark.parametrize(
        ("path", "metadata", "problem"),
        [
            ("/api/getOrders", {"method": "GET"}, "verb"),
            ("/api/order", {"method": "GET"}, "plural"),
            ("/api/Orders", {"method": "GET"}, "kebab-case"),
            ("/api/orders", {"method": "GET", "action": "create"}, "maps to POST"),
            ("/api/orders", {"method": "FETCH"}, "unknown HTTP method"),
        ],
    )
    def test_rest_shape_violations_reject(self, registry, path, metadata, problem) -> None:
        verdict = _run(_item("backend", "route", path, **metadata), registry)
        assert verdict.outcome is Outcome.REJECT
        assert problem in verdict.reason

    def test_breaking_change_is_checked_as_new_route(self, registry) -> None:
        verdict = _run(
            _item("backend", "route", "/api/users/{id}/avatar", breaking=True), registry
        )
        assert verdict.outcome is Outcome.APPROVE

    def test_inconsistent_auth_is_a_remediation(self, registry) -> None:
        verdict = _run(
            _item("backend", "route", "/api/orders", method="GET", auth="apikey"),
            registry,
        )
        assert verdict.outcome is Outcome.APPROVE
        assert verdict.followup is Outcome.FIX_AUTH
        [fix] = [d for d in verdict.directives if d.action == "fix_auth"]
        assert fix.value == "session"

    def test_resource_of(self) -> None:
        assert keeper.engine.matrix.resource_of("/api/v2/users/{id}") == "users"
        assert keeper.engine.matrix.resource_of("/") == ""


class TestData:
    def test_append_values(self, registry) -> None:
        verdict = _run(
            _item("data", "enum", "status", "extend", "orders", add_values=["returned"]),
            registry,
        )
        assert verdict.outcome is Outcome.EXTEND
        assert verdict.extensions[0].value == ["returned"]
        assert verdict.followup is Outcome.MIGRATION_PLAN
        assert any(d.action == "migration_plan" for d in verdict.directives)

    def test_full_value_list_must_keep_prefix(self, registry) -> None:
        verdict = _run(
            _item(
                "data", "enum", "status", "extend", "orders",
                values=["pending", "delivered", "shipped", "lost"],
            ),
            registry,
        )
        assert verdict.outcome is Outcome.REJECT
        assert "append-only" in verdict.reason

    def test_unchanged_values_reuse(self, registry) -> None:
        verdict = _run(
            _item(
                "data", "enum", "status", "reuse", "orders",
                values=["pending", "shipped", "delivered"],
            ),
            registry,
        )
        assert verdict.outcome is Outcome.USE

    def test_new_enum_needs_one_owning_table(self, registry) -> None:
        unscoped = _run(_item("data", "enum", "priority", values=["low"]), registry)
        assert unscoped.outcome is Outcome.REJECT
        assert "global enums" in unscoped.reason
        shared = _run(
            _item("data", "enum", "priority", scope="tickets,orders", values=["low"]),
            registry,
        )
        assert shared.outcome is Outcome.REJECT

    def test_new_scoped_enum_is_approved_with_migration(self, registry) -> None:
        verdict = _run(
            _item("data", "enum", "priority", scope="tickets", values=["low", "high"]),
            registry,
        )
        assert verdict.outcome is Outcome.APPROVE
        assert verdict.new_seeds[0].scope == "tickets"
        assert verdict.followup is Outcome.MIGRATION_PLAN

    def test_conservation_blocks_migrations(self, registry) -> None:
        item = _item("data", "enum", "status", "extend", "orders", add_values=["lost"])
        verdict = _run(item, registry, Mode.CONSERVATION)
        assert verdict.outcome is Outcome.BLOCK

        config = keeper.engine.config.KeeperConfig(migrations_in_conservation=True)
        verdict = _run(item, registry, Mode.CONSERVATION, config)
        assert verdict.outcome is Outcome.EXTEND

    def test_conservation_rejects_new_enum(self, registry) -> None:
        verdict = _run(
            _item("data", "enum", "shipment_status", scope="shipments"),
            registry,
            Mode.CONSERVATION,
        )
        assert verdict.outcome is Outcome.REJECT
        assert "conservation" in verdict.reason


class TestAuth:
    def test_no_auth_service_blocks(self) -> None:
        registry = keeper.engine.registry.load({})
        verdict = _run(_item("auth", "service", "SocialLoginService"), registry)
        assert verdict.outcome is Outcome.BLOCK

    def test_second_auth_system_blocks(self, registry) -> None:
        verdict = _run(_item("auth", "service", "SocialLoginService"), registry)
        assert verdict.outcome is Outcome.BLOCK
        assert "second auth system" in verdict.reason

    def test_reuse_service(self, registry) -> None:
        verdict = _run(_item("auth", "service", "SessionAuth", "reuse"), registry)
        assert verdict.outcome is Outcome.USE

    def test_new_permission_adds_scope(self, registry) -> None:
        verdict = _run(_item("auth", "scope", "write:orders"), registry)
        assert verdict.outcome is Outcome.ADD_SCOPE
        [directive] = verdict.directives
        assert (directive.action, directive.name, directive.value) == (
            "add_scope",
            "SessionAuth",
            "write:orders",
        )

    def test_existing_scope_is_reused(self, registry) -> None:
        verdict = _run(_item("auth", "scope", "read:orders", "reuse"), registry)
        assert verdict.outcome is Outcome.USE

    @pytest.mark.parametrize("operation", ["create", "extend"])
    def test_roles_are_never_created_or_widened(self, registry, operation) -> None:
        verdict = _run(_item("auth", "role", "superadmin", operation), registry)
        assert verdict.outcome is Outcome.REJECT

    def test_token_shape_mismatch_rejects(self, registry) -> None:
        verdict = _run(_item("auth", "scope", "write:orders", token="opaque"), registry)
        assert verdict.outcome is Outcome.REJECT
        ok = _run(_item("auth", "scope", "write:orders", token="jwt"), registry)
        assert ok.followup is Outcome.PROCEED

    def test_several_services_defer(self) -> None:
        registry = keeper.engine.registry.load(
            {"auth": {"SessionAuth": {}, "ApiKeyAuth": {}}}
        )
        verdict = _run(_item("auth", "scope", "write:orders"), registry)
        assert verdict.outcome is Outcome.DEFER
        assert verdict.ambiguous


class TestEvaluate:
    def test_malformed_items_fail_before_any_table(self, registry) -> None:
        bad = ChangeItem(
            domain=Domain.FRONTEND,
            kind=Kind.ROUTE,
            name="Button",
            operation=Operation.CREATE,
        )
        good = _item("frontend", "component", "Button", variant="warning")
        proposal = ProposedChange("x", (good, bad))
        with pytest.raises(keeper.errors.ValidationError):
            keeper.engine.matrix.evaluate(
                proposal, registry, Mode.GROWTH, keeper.engine.config.KeeperConfig()
            )
        assert registry.lookup(Kind.COMPONENT, "Button").usage_count == 0

    @pytest.mark.parametrize(
        "item",
        [
            ChangeItem("frontend", Kind.COMPONENT, "X", Operation.CREATE),
            ChangeItem(Domain.FRONTEND, Kind.COMPONENT, " ", Operation.CREATE),
            ChangeItem(Domain.FRONTEND, Kind.COMPONENT, "X", "make"),
        ],
    )
    def test_validate_item(self, item) -> None:
        with pytest.raises(keeper.errors.ValidationError):
            keeper.engine.matrix.validate_item(item)

    def test_empty_proposal(self) -> None:
        with pytest.raises(keeper.errors.ValidationError, match="no changes"):
            keeper.engine.matrix.validate_proposal(ProposedChange("empty", ()))

    def _button_twice(self) -> ProposedChange:
        return ProposedChange(
            "two variants",
            (
                _item("frontend", "component", "Button", "extend", variant="warning"),
                _item("frontend", "component", "Button", "extend", variant="info"),
            ),
        )

    def test_one_proposal_counts_once_towards_promotion(self, registry) -> None:
        config = keeper.engine.config.KeeperConfig()
        verdicts = keeper.engine.matrix.evaluate(
            self._button_twice(), registry, Mode.GROWTH, config
        )
        assert [v.outcome for v in verdicts] == [Outcome.EXTEND, Outcome.EXTEND]
        assert [v.new_seeds for v in verdicts] == [[], []]
        assert registry.lookup(Kind.COMPONENT, "Button").usage_count == 0

    def test_promotion_is_emitted_once_per_proposal(self, registry) -> None:
        registry.merge_usage({(Kind.COMPONENT, "Button", None): 1})
        config = keeper.engine.config.KeeperConfig()
        verdicts = keeper.engine.matrix.evaluate(
            self._button_twice(), registry, Mode.GROWTH, config
        )
        assert [len(v.new_seeds) for v in verdicts] == [1, 0]
        assert registry.lookup(Kind.COMPONENT, "Button").usage_count == 1


class TestConservation:
    @pytest.mark.parametrize(
        "item",
        [
            _item("frontend", "component", "Carousel", "extend"),
            _item("backend", "route", "/api/orders", "extend", method="GET"),
            _item("backend", "route", "/api/users/{id}/avatar", "extend", method="GET"),
            _item("backend", "service", "BillingService", "extend"),
            _item("data", "enum", "shipment_status", "extend", "shipments", values=["new"]),
            _item("auth", "scope", "write:orders", "extend"),
        ],
        ids=["component", "route", "sibling-route", "service", "enum", "scope"],
    )
    def test_extend_cannot_create(self, registry, item) -> None:
        verdict = _run(item, registry, Mode.CONSERVATION)
        assert verdict.outcome is Outcome.REJECT
        assert "to extend" in verdict.reason
        assert verdict.new_seeds == []

    def test_create_of_growable_seed_is_allowed(self, registry) -> None:
        verdict = _run(
            _item("frontend", "component", "Button", variant="warning"),
            registry,
            Mode.CONSERVATION,
        )
        assert verdict.outcome is Outcome.EXTEND
