import os
import pytest
from unittest.mock import MagicMock

from app.core.errors import PipelineDefinitionError
from app.pipeline.actions import ActionCatalog
from app.pipeline.definition import load_definition, parse_definition

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT = os.path.join(ROOT, "pipelines", "default.yml")
STAGING_FIRST = os.path.join(ROOT, "pipelines", "staging-first.yml")


@pytest.fixture
def catalog():
    return ActionCatalog(
        builder=MagicMock(), registry=MagicMock(), e2e_runner=MagicMock(),
        version_resolver=MagicMock(), git_agent=MagicMock(), executor=MagicMock(),
    )


def test_default_definition(catalog):
    definition = load_definition(DEFAULT, catalog)
    assert definition.stage_names() == [
        "checkout", "unit-tests", "build", "push-staging",
        "e2e-tests", "version-tag", "promote", "deploy",
    ]
    by_name = {s.name: s for s in definition.stages}
    assert by_name["unit-tests"].post_action.name == "archive_unit_reports"
    assert by_name["push-staging"].actions[1].attempts == 3
    for name in ("version-tag", "promote", "deploy"):
        cond = by_name[name].condition
        assert cond.require_success is True
        assert "feature/*" not in cond.branches
    assert by_name["version-tag"].actions[0].attempts == 1
    assert by_name["deploy"].actions[0].attempts == 1


def test_staging_first_definition_orders_push_before_tests(catalog):
    names = load_definition(STAGING_FIRST, catalog).stage_names()
    assert names.index("push-staging") < names.index("unit-tests")
    promote = load_definition(STAGING_FIRST, catalog).stages[names.index("promote")]
    assert promote.condition.branches == ("main",)


def test_positions_follow_declaration(catalog):
    definition = load_definition(DEFAULT, catalog)
    assert [s.position for s in definition.stages] == list(range(1, 9))


def test_unknown_action(catalog):
    data = {"stages": [{"name": "x", "actions": ["launch_rockets"]}]}
    with pytest.raises(PipelineDefinitionError, match="Unknown action"):
        parse_definition(data, catalog)


def test_retry_on_non_repeatable_action_rejected(catalog):
    data = {"stages": [{"name": "deploy", "actions": [
        {"action": "update_deploy_config", "attempts": 3},
    ]}]}
    with pytest.raises(PipelineDefinitionError):
        parse_definition(data, catalog)


def test_unknown_branch_set(catalog):
    data = {"stages": [{"name": "x", "branches": "nightly", "actions": ["build_images"]}]}
    with pytest.raises(PipelineDefinitionError, match="branch set"):
        parse_definition(data, catalog)


def test_bad_params(catalog):
    data = {"stages": [{"name": "x", "actions": [
        {"action": "registry_login", "params": {"region": "mars"}},
    ]}]}
    with pytest.raises(PipelineDefinitionError, match="Bad parameters"):
        parse_definition(data, catalog)


def test_duplicate_stage_names(catalog):
    data = {"stages": [
        {"name": "x", "actions": ["build_images"]},
        {"name": "x", "actions": ["build_images"]},
    ]}
    with pytest.raises(PipelineDefinitionError):
        parse_definition(data, catalog)


def test_stage_without_actions(catalog):
    with pytest.raises(PipelineDefinitionError):
        parse_definition({"stages": [{"name": "x"}]}, catalog)


def test_invalid_yaml(tmp_path, catalog):
    path = tmp_path / "bad.yml"
    path.write_text("stages: [\n")
    with pytest.raises(PipelineDefinitionError, match="Invalid YAML"):
        load_definition(str(path), catalog)


def test_missing_file(tmp_path, catalog):
    with pytest.raises(PipelineDefinitionError):
        load_definition(str(tmp_path / "nope.yml"), catalog)
