"""
Tests for workflow configuration loading and validation.

Verifies:
- The shipped default set loads, validates and seeds four definitions
- Checksums are deterministic and track fragment content
- Invalid sets are refused with every error listed
- Warnings (uncovered roles) are logged but do not block loading
"""

import shutil
from pathlib import Path

import pytest

from approval_config import ConfigurationError, get_active_config
from approval_config.loader import (
    definition_id_for,
    load_configuration_set,
    parse_rule,
    parse_workflow,
)
from approval_config.validator import validate_configuration
from approval_kernel.domain.workflow import (
    ApprovalMode,
    DocumentType,
    RuleOperator,
)
from approval_services.bootstrap import WorkflowServices

SETS_DIR = Path(__file__).resolve().parents[2] / "approval_config" / "sets"


def _write_set(root: Path, settings: str, roles: str = "", workflows: dict | None = None) -> Path:
    set_dir = root / "custom"
    (set_dir / "workflows").mkdir(parents=True)
    (set_dir / "settings.yaml").write_text(settings)
    if roles:
        (set_dir / "roles.yaml").write_text(roles)
    for filename, body in (workflows or {}).items():
        (set_dir / "workflows" / filename).write_text(body)
    return root


PO_WORKFLOW = """
name: PO approval
document_type: purchase_order
is_default: true
levels:
  - number: 1
    name: Manager
    approver_roles: [procurement_manager]
routing_rules: []
"""


class TestDefaultSet:

    def test_loads_and_validates(self, workflow_config):
        assert workflow_config.set_name == "default"
        assert workflow_config.settings.routing_strategy == "union"
        assert workflow_config.settings.default_page_size == 50
        assert workflow_config.settings.recent_completion_days == 7
        assert len(workflow_config.checksum) == 64
        assert workflow_config.principals_for("finance_director") == ("u.finance_director",)
        assert workflow_config.principals_for("nobody") == ()

    def test_one_default_definition_per_document_type(self, workflow_config):
        for document_type in DocumentType:
            (definition,) = workflow_config.definitions_for(document_type)
            assert definition.is_default
            assert definition.is_selectable

    def test_supplier_definition(self, workflow_config):
        (supplier,) = workflow_config.definitions_for(DocumentType.SUPPLIER)
        assert supplier.level_numbers() == (1, 2, 3, 4)
        assert supplier.mandatory_levels() == frozenset({1, 2, 3})
        assert supplier.level_config(1).approver_roles == frozenset({"data_entry_personnel"})
        (rule,) = supplier.routing_rules
        assert rule.operator is RuleOperator.IN
        assert rule.comparison_value == ("A", "B")
        assert rule.target_levels == frozenset({4})

    def test_quotation_thresholds(self, workflow_config):
        (quotation,) = workflow_config.definitions_for(DocumentType.MATERIAL_QUOTATION)
        assert quotation.mandatory_levels() == frozenset({1})
        assert [(r.operator, r.comparison_value, r.target_levels) for r in quotation.routing_rules] == [
            (RuleOperator.LTE, 50000, frozenset({2})),
            (RuleOperator.GT, 50000, frozenset({2, 3})),
        ]

    def test_definition_ids_are_stable(self, workflow_config):
        for definition in workflow_config.definitions:
            assert definition.definition_id == definition_id_for(
                definition.document_type, definition.name,
            )

    def test_checksum_is_deterministic(self, workflow_config):
        assert get_active_config().checksum == workflow_config.checksum

    def test_load_is_traced(self, captured_logs):
        pack = get_active_config()
        (loaded,) = [r for r in captured_logs() if r["message"] == "workflow_config_loaded"]
        assert loaded["trace_type"] == "WORKFLOW_CONFIG_TRACE"
        assert loaded["checksum"] == pack.checksum
        assert loaded["definition_count"] == 4
        assert loaded["role_binding_count"] == 5


class TestParsing:

    def test_condition_map_rule(self):
        rule = parse_rule({"conditions": {"amount": {"gte": 1000, "lt": 5000}}, "target_levels": [2]})
        assert [c.operator for c in rule.conditions] == [RuleOperator.GTE, RuleOperator.LT]

    def test_workflow_defaults(self):
        definition = parse_workflow({
            "name": "Minimal",
            "document_type": "pre_payment",
            "levels": [{"number": 1, "approver_roles": ["finance_director"]}],
        })
        level = definition.level_config(1)
        assert level.approval_mode is ApprovalMode.ANY
        assert level.mandatory
        assert definition.is_active and not definition.is_default
        assert definition.allow_recall

    def test_unknown_document_type(self):
        with pytest.raises(ValueError):
            parse_workflow({"name": "X", "document_type": "invoice"})


class TestCustomSets:

    def test_missing_set(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path, "absent")

    def test_missing_settings(self, tmp_path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path, "empty")

    def test_invalid_set_lists_every_error(self, tmp_path):
        broken_po = """
name: Broken
document_type: purchase_order
is_default: true
levels:
  - number: 1
    approver_roles: [procurement_manager]
  - number: 3
    approver_roles: [general_manager]
routing_rules:
  - field: amount
    operator: gt
    value: 10
    target_levels: [7]
"""
        root = _write_set(
            tmp_path,
            "routing_strategy: weighted\ndefault_page_size: 0\n",
            workflows={"a.yaml": PO_WORKFLOW, "b.yaml": broken_po},
        )

        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config(root, "custom")

        errors = exc_info.value.errors
        assert exc_info.value.code == "CONFIGURATION_INVALID"
        assert exc_info.value.set_name == "custom"
        assert any(e.startswith("Unknown routing_strategy 'weighted'") for e in errors)
        assert "default_page_size must be positive" in errors
        assert (
            "Workflow 'Broken' (purchase_order): Level numbers must be sequential starting from 1"
            in errors
        )
        assert (
            "Workflow 'Broken' (purchase_order): routing rule 1 targets undefined levels [7]"
            in errors
        )
        assert any(e.startswith("Multiple default workflows for purchase_order") for e in errors)

    def test_duplicate_names(self, tmp_path):
        root = _write_set(
            tmp_path,
            "routing_strategy: union\n",
            roles="roles:\n  procurement_manager: [u.pm]\n",
            workflows={"a.yaml": PO_WORKFLOW, "b.yaml": PO_WORKFLOW.replace("true", "false")},
        )
        config_set = load_configuration_set(root / "custom")
        result = validate_configuration(config_set)
        assert not result.is_valid
        assert result.errors == [
            "Duplicate workflow: 'PO approval' appears more than once for purchase_order",
        ]

    def test_uncovered_role_is_a_warning(self, tmp_path, captured_logs):
        root = _write_set(
            tmp_path,
            "set_name: lean\nrouting_strategy: union\n",
            roles="roles:\n  procurement_manager: [u.pm]\ndisabled_principals: [u.pm]\n",
            workflows={"po.yaml": PO_WORKFLOW},
        )

        pack = get_active_config(root, "custom")

        assert pack.set_name == "lean"
        assert pack.disabled_principals == frozenset({"u.pm"})
        warnings = [r for r in captured_logs() if r["message"] == "workflow_config_warning"]
        assert warnings[0]["warning"] == (
            "Workflow 'PO approval' level 1: role 'procurement_manager' has no enabled principals"
        )

    def test_checksum_tracks_content(self, tmp_path):
        shutil.copytree(SETS_DIR / "default", tmp_path / "default")
        original = get_active_config(tmp_path).checksum

        settings = tmp_path / "default" / "settings.yaml"
        settings.write_text(settings.read_text().replace("default_page_size: 50", "default_page_size: 25"))

        changed = get_active_config(tmp_path)
        assert changed.checksum != original
        assert changed.settings.default_page_size == 25

    def test_first_match_strategy_is_wired(self, tmp_path, session):
        root = _write_set(
            tmp_path,
            "routing_strategy: first_match\ndefault_page_size: 10\n",
            roles="roles:\n  procurement_manager: [u.pm]\n",
            workflows={"po.yaml": PO_WORKFLOW},
        )
        pack = get_active_config(root, "custom")

        services = WorkflowServices(session, pack)

        assert services.engine.routing_strategy == "first_match"
        assert services.role_directory.is_member("u.pm", {"procurement_manager"})
