"""Tests for the BoQ line registry."""

from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.exceptions import (
    BoQLineInUseError,
    BoQLineNotFoundError,
    ProjectNotFoundError,
    ValidationError,
)
from billing_modules.boq.models import BoQCategory


def _add(registry, tenant_id, project, code, actor_id, **kwargs):
    return registry.add_line(
        tenant_id,
        project.id,
        item_code=code,
        description=kwargs.pop("description", f"Item {code}"),
        quantity=kwargs.pop("quantity", Decimal("10")),
        unit_of_measure=kwargs.pop("unit_of_measure", "m2"),
        contract_unit_price=kwargs.pop("contract_unit_price", Decimal("25.00")),
        actor_id=actor_id,
        **kwargs,
    )


class TestCreateProject:
    """Project setup and validation."""

    def test_create_and_get(self, boq_registry, make_project, tenant_id):
        project = make_project("PRJ-A", contract_currency="usd")
        loaded = boq_registry.get_project(tenant_id, project.id)
        assert loaded == project
        assert loaded.contract_currency == "USD"
        assert loaded.default_retention_rate == Decimal("0.10")

    def test_project_without_customer_or_currency(self, make_project):
        project = make_project("PRJ-B", customer_id=None, contract_currency=None)
        assert project.customer_id is None
        assert project.contract_currency is None

    def test_duplicate_code_rejected(self, make_project):
        make_project("PRJ-C")
        with pytest.raises(ValidationError) as exc_info:
            make_project("PRJ-C")
        assert exc_info.value.field == "code"

    def test_invalid_currency_rejected(self, make_project):
        with pytest.raises(ValidationError) as exc_info:
            make_project("PRJ-D", contract_currency="XXX")
        assert exc_info.value.field == "contract_currency"

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("1.5")])
    def test_rate_outside_unit_interval_rejected(self, make_project, rate):
        with pytest.raises(ValidationError):
            make_project("PRJ-E", default_retention_rate=rate)

    def test_negative_contract_amount_rejected(self, make_project):
        with pytest.raises(ValidationError):
            make_project("PRJ-F", contract_amount=Decimal("-1"))

    def test_unknown_project(self, boq_registry, tenant_id):
        with pytest.raises(ProjectNotFoundError):
            boq_registry.get_project(tenant_id, uuid4())

    def test_other_tenant_cannot_see_project(self, boq_registry, make_project):
        project = make_project("PRJ-G")
        with pytest.raises(ProjectNotFoundError):
            boq_registry.get_project(uuid4(), project.id)


class TestAddLine:
    """BoQ line insertion and validation."""

    def test_lines_listed_in_insertion_order(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        project = make_project()
        for code in ("C.03", "A.01", "B.02"):
            _add(boq_registry, tenant_id, project, code, test_actor_id)

        lines = boq_registry.list_lines(tenant_id, project.id)
        assert [line.item_code for line in lines] == ["C.03", "A.01", "B.02"]
        assert [line.sequence for line in lines] == [1, 2, 3]

    def test_line_fields_and_totals(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        line = _add(
            boq_registry,
            tenant_id,
            project,
            "A.01",
            test_actor_id,
            quantity=Decimal("12.5"),
            contract_unit_price=Decimal("40.00"),
            estimated_unit_cost=Decimal("30.00"),
            category=BoQCategory.MATERIAL,
        )
        assert line.project_id == project.id
        assert line.category == BoQCategory.MATERIAL
        assert line.total_contract_amount == Decimal("500.00")
        assert line.total_estimated_cost == Decimal("375.00")

    def test_duplicate_item_code_rejected(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        project = make_project()
        _add(boq_registry, tenant_id, project, "A.01", test_actor_id)
        with pytest.raises(ValidationError) as exc_info:
            _add(boq_registry, tenant_id, project, "A.01", test_actor_id)
        assert exc_info.value.field == "item_code"

    def test_quantity_with_five_decimals_rejected(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        project = make_project()
        with pytest.raises(ValidationError) as exc_info:
            _add(boq_registry, tenant_id, project, "A.01", test_actor_id, quantity=Decimal("1.00001"))
        assert exc_info.value.field == "quantity"

    def test_price_with_three_decimals_rejected(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        project = make_project()
        with pytest.raises(ValidationError):
            _add(
                boq_registry,
                tenant_id,
                project,
                "A.01",
                test_actor_id,
                contract_unit_price=Decimal("1.005"),
            )

    def test_float_quantity_rejected(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        with pytest.raises(ValidationError):
            _add(boq_registry, tenant_id, project, "A.01", test_actor_id, quantity=1.5)

    def test_unknown_project(self, boq_registry, tenant_id, test_actor_id):
        with pytest.raises(ProjectNotFoundError):
            boq_registry.add_line(
                tenant_id,
                uuid4(),
                item_code="A.01",
                description="x",
                quantity=Decimal("1"),
                unit_of_measure="pc",
                contract_unit_price=Decimal("1.00"),
                actor_id=test_actor_id,
            )

    def test_unknown_parent(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        with pytest.raises(BoQLineNotFoundError):
            _add(boq_registry, tenant_id, project, "A.01", test_actor_id, parent_id=uuid4())

    def test_parent_from_other_project_rejected(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        first = make_project("PRJ-1")
        second = make_project("PRJ-2")
        foreign = _add(boq_registry, tenant_id, first, "A", test_actor_id)
        with pytest.raises(ValidationError) as exc_info:
            _add(boq_registry, tenant_id, second, "A.1", test_actor_id, parent_id=foreign.id)
        assert exc_info.value.field == "parent_id"
        assert boq_registry.list_lines(tenant_id, second.id) == []


class TestLineTree:
    """Arena view over nested BoQ lines."""

    def test_tree_indices(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        root = _add(boq_registry, tenant_id, project, "1", test_actor_id)
        child = _add(boq_registry, tenant_id, project, "1.1", test_actor_id, parent_id=root.id)
        _add(boq_registry, tenant_id, project, "1.1.1", test_actor_id, parent_id=child.id)
        _add(boq_registry, tenant_id, project, "1.2", test_actor_id, parent_id=root.id)
        _add(boq_registry, tenant_id, project, "2", test_actor_id)

        tree = boq_registry.line_tree(tenant_id, project.id)

        assert [node.line.item_code for node in tree] == ["1", "1.1", "1.1.1", "1.2", "2"]
        assert [node.depth for node in tree] == [0, 1, 2, 1, 0]
        assert [node.parent_index for node in tree] == [None, 0, 1, 0, None]
        assert tree[0].child_indices == (1, 3)
        assert tree[1].child_indices == (2,)
        assert tree[4].child_indices == ()

    def test_empty_project_has_empty_tree(self, boq_registry, make_project, tenant_id):
        project = make_project()
        assert boq_registry.line_tree(tenant_id, project.id) == []


class TestUpdateLine:
    """In-place edits of BoQ lines."""

    def test_edit_fields(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        line = _add(boq_registry, tenant_id, project, "A.01", test_actor_id)

        updated = boq_registry.update_line(
            tenant_id,
            line.id,
            test_actor_id,
            description="Formwork",
            quantity=Decimal("12"),
            contract_unit_price=Decimal("30.00"),
            category=BoQCategory.SUBCONTRACTOR,
        )

        assert updated.id == line.id
        assert updated.sequence == line.sequence
        assert updated.description == "Formwork"
        assert updated.category == BoQCategory.SUBCONTRACTOR
        assert updated.total_contract_amount == Decimal("360.00")
        assert boq_registry.list_lines(tenant_id, project.id) == [updated]

    def test_rename_to_used_item_code_rejected(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        project = make_project()
        _add(boq_registry, tenant_id, project, "A.01", test_actor_id)
        second = _add(boq_registry, tenant_id, project, "A.02", test_actor_id)

        with pytest.raises(ValidationError) as exc_info:
            boq_registry.update_line(tenant_id, second.id, test_actor_id, item_code="A.01")
        assert exc_info.value.field == "item_code"

    def test_overly_precise_price_rejected(
        self, boq_registry, make_project, tenant_id, test_actor_id
    ):
        project = make_project()
        line = _add(boq_registry, tenant_id, project, "A.01", test_actor_id)
        with pytest.raises(ValidationError):
            boq_registry.update_line(
                tenant_id, line.id, test_actor_id, contract_unit_price=Decimal("1.001")
            )
        assert boq_registry.list_lines(tenant_id, project.id)[0].contract_unit_price == Decimal("25.00")

    def test_other_tenant_cannot_edit(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        line = _add(boq_registry, tenant_id, project, "A.01", test_actor_id)
        with pytest.raises(BoQLineNotFoundError):
            boq_registry.update_line(uuid4(), line.id, test_actor_id, description="x")


class TestRemoveLine:
    """Removal is allowed only for unreferenced lines."""

    def test_remove_unreferenced_line(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        keep = _add(boq_registry, tenant_id, project, "A.01", test_actor_id)
        drop = _add(boq_registry, tenant_id, project, "A.02", test_actor_id)

        boq_registry.remove_line(tenant_id, drop.id, test_actor_id)

        assert boq_registry.list_lines(tenant_id, project.id) == [keep]

    def test_line_with_children_stays(self, boq_registry, make_project, tenant_id, test_actor_id):
        project = make_project()
        parent = _add(boq_registry, tenant_id, project, "1", test_actor_id)
        _add(boq_registry, tenant_id, project, "1.1", test_actor_id, parent_id=parent.id)

        with pytest.raises(BoQLineInUseError) as exc_info:
            boq_registry.remove_line(tenant_id, parent.id, test_actor_id)

        assert exc_info.value.code == "BOQ_LINE_IN_USE"
        assert len(boq_registry.list_lines(tenant_id, project.id)) == 2

    def test_line_on_a_payment_stays(
        self, boq_registry, billable_project, create_draft, payment_service, tenant_id, test_actor_id
    ):
        document = create_draft(billable_project)
        line_id = document.details[0].boq_line_id

        with pytest.raises(BoQLineInUseError):
            boq_registry.remove_line(tenant_id, line_id, test_actor_id)

        assert [l.id for l in boq_registry.list_lines(tenant_id, billable_project.id)] == [line_id]
        assert len(payment_service.get_payment(tenant_id, document.id).details) == 1

    def test_unknown_line(self, boq_registry, tenant_id, test_actor_id):
        with pytest.raises(BoQLineNotFoundError):
            boq_registry.remove_line(tenant_id, uuid4(), test_actor_id)
