"""Tests for pipeline loading and sequential execution."""

import json
import logging
from unittest.mock import MagicMock

import pytest

from pai.core.pipeline import PipelineDefinition, PipelineLoader, PipelineRunner
from pai.exceptions import DefinitionError, ResolutionError
from pai.testing import write_action, write_pipeline


ADD_CODE = """
def execute(input, context):
    return {"value": input["value"] + input["amount"]}
"""

ADD_MANIFEST = {
    "input": {
        "value": {"type": "integer", "required": True},
        "amount": {"type": "integer", "default": 1},
    },
}

INC_CODE = """
def execute(input, context):
    return {"v": input["v"] + 1}
"""

ECHO_CODE = """
def execute(input, context):
    return input
"""

FAIL_CODE = """
def execute(input, context):
    raise RuntimeError("step exploded")
"""


@pytest.fixture
def actions(user_actions):
    write_action(user_actions, "math/add", ADD_CODE, ADD_MANIFEST)
    write_action(user_actions, "calc/inc", INC_CODE)
    write_action(user_actions, "A_INC", INC_CODE)
    write_action(user_actions, "debug/echo", ECHO_CODE)
    write_action(user_actions, "A_FAIL", FAIL_CODE)
    return user_actions


@pytest.fixture
def pipeline_runner(settings, actions):
    return PipelineRunner.from_settings(settings)


class TestPipelineDefinition:
    def test_mapped_form(self):
        definition = PipelineDefinition(name="p", steps=[{"id": "a", "action": "A_X"}])
        assert definition.form == "mapped"
        assert definition.step_count == 1

    def test_piped_form(self):
        definition = PipelineDefinition(name="p", actions=["A_X", "A_Y"])
        assert definition.form == "piped"
        assert definition.step_count == 2

    def test_needs_exactly_one_form(self):
        with pytest.raises(ValueError, match="exactly one"):
            PipelineDefinition(name="p")
        with pytest.raises(ValueError, match="exactly one"):
            PipelineDefinition(name="p", steps=[{"id": "a", "action": "A_X"}], actions=["A_X"])

    def test_duplicate_step_ids(self):
        with pytest.raises(ValueError, match="Duplicate step id 'a'"):
            PipelineDefinition(
                name="p",
                steps=[{"id": "a", "action": "A_X"}, {"id": "a", "action": "A_Y"}],
            )

    def test_output_mapping_needs_steps(self):
        with pytest.raises(ValueError, match="only valid with 'steps'"):
            PipelineDefinition(name="p", actions=["A_X"], output_mapping={"x": "{{input}}"})

    def test_unknown_step_key(self):
        with pytest.raises(ValueError):
            PipelineDefinition(name="p", steps=[{"id": "a", "action": "A_X", "retries": 3}])


class TestPipelineLoader:
    def test_user_shadows_system(self, settings, user_pipelines, system_pipelines):
        write_pipeline(system_pipelines, "clean", {"description": "system", "actions": ["A_X"]})
        write_pipeline(user_pipelines, "clean", {"description": "user", "actions": ["A_X"]})
        loader = PipelineLoader(settings.pipeline_roots)

        assert loader.load("clean").description == "user"
        assert loader.find("clean")[1] == "user"

    def test_name_defaults_to_file_stem(self, settings, system_pipelines):
        write_pipeline(system_pipelines, "clean", {"actions": ["A_X"]})
        assert PipelineLoader(settings.pipeline_roots).load("clean").name == "clean"

    def test_json_document(self, settings, user_pipelines):
        user_pipelines.mkdir(parents=True)
        (user_pipelines / "clean.json").write_text(json.dumps({"actions": ["A_X"]}))

        assert PipelineLoader(settings.pipeline_roots).load("clean").form == "piped"

    def test_not_found(self, settings):
        with pytest.raises(ResolutionError, match="Pipeline not found: nothing"):
            PipelineLoader(settings.pipeline_roots).load("nothing")

    def test_path_names_rejected(self, settings, user_pipelines):
        write_pipeline(user_pipelines, "clean", {"actions": ["A_X"]})
        loader = PipelineLoader(settings.pipeline_roots)

        assert loader.find("../pipelines/clean") is None
        assert loader.find(".clean") is None

    def test_malformed(self, settings, user_pipelines):
        write_pipeline(user_pipelines, "broken", {"steps": [], "actions": []})

        with pytest.raises(DefinitionError, match="Invalid pipeline"):
            PipelineLoader(settings.pipeline_roots).load("broken")

    def test_list(self, settings, user_pipelines, system_pipelines):
        write_pipeline(system_pipelines, "clean", {"description": "system", "actions": ["A_X"]})
        write_pipeline(system_pipelines, "blog", {"steps": [{"id": "a", "action": "A_X"}]})
        write_pipeline(user_pipelines, "clean", {"description": "user", "actions": ["A_X", "A_Y"]})
        write_pipeline(user_pipelines, "broken", {"nonsense": True})

        summaries = PipelineLoader(settings.pipeline_roots).list()

        assert [s.name for s in summaries] == ["blog", "broken", "clean"]
        blog, broken, clean = summaries
        assert blog.form == "mapped"
        assert blog.source == "system"
        assert broken.description.startswith("invalid pipeline")
        assert clean.source == "user"
        assert clean.steps == 2


class TestMappedPipeline:
    def test_output_mapping(self, pipeline_runner, user_pipelines):
        write_pipeline(
            user_pipelines,
            "sums",
            {
                "steps": [
                    {"id": "a", "action": "math/add", "input": {"value": "{{input.start}}"}},
                    {
                        "id": "b",
                        "action": "math/add",
                        "input": {"value": "{{steps.a.output.value}}", "amount": 10},
                    },
                ],
                "output_mapping": {
                    "first": "{{steps.a.output.value}}",
                    "final": "{{steps.b.output.value}}",
                    "summary": "a={{steps.a.output.value}}",
                },
            },
        )

        result = pipeline_runner.run("sums", {"start": 1})

        assert result.success
        assert result.output == {"first": 2, "final": 12, "summary": "a=2"}
        assert result.step_results == {
            "a": {"output": {"value": 2}},
            "b": {"output": {"value": 12}},
        }
        assert result.metadata["pipeline"] == "sums"
        assert result.metadata["durationMs"] >= 0

    def test_output_defaults_to_last_step(self, pipeline_runner, user_pipelines):
        write_pipeline(
            user_pipelines,
            "sums",
            {
                "steps": [
                    {"id": "a", "action": "math/add", "input": {"value": 1}},
                    {"id": "b", "action": "math/add", "input": {"value": "{{steps.a.output.value}}"}},
                ],
            },
        )

        assert pipeline_runner.run("sums").output == {"value": 3}

    def test_halts_on_first_failure(self, settings, actions, user_pipelines, counter):
        write_action(
            actions,
            "A_COUNTED",
            f"""
def execute(input, context):
    {counter.snippet}
    return {{}}
""",
        )
        write_pipeline(
            user_pipelines,
            "halting",
            {
                "steps": [
                    {"id": "one", "action": "math/add", "input": {"value": 1}},
                    {"id": "two", "action": "A_FAIL"},
                    {"id": "three", "action": "A_COUNTED"},
                ],
            },
        )

        result = PipelineRunner.from_settings(settings).run("halting")

        assert not result.success
        assert result.output is None
        assert result.error == "Step 'two' (A_FAIL) failed: Execution failed: step exploded"
        assert result.step_results == {"one": {"output": {"value": 2}}}
        assert result.metadata["failedStep"] == "two"
        assert result.error_type == "execution"
        assert counter.count == 0
        assert result.to_dict()["stepResults"] == {"one": {"output": {"value": 2}}}

    def test_step_input_validation_failure(self, pipeline_runner, user_pipelines):
        write_pipeline(
            user_pipelines,
            "bad_input",
            {"steps": [{"id": "a", "action": "math/add", "input": {"value": "{{input.missing}}"}}]},
        )

        result = pipeline_runner.run("bad_input", {})

        assert result.error == "Step 'a' (math/add) failed: Input validation failed: value: required field is missing"
        assert result.error_type == "validation"

    def test_unknown_action(self, pipeline_runner, user_pipelines):
        write_pipeline(user_pipelines, "ghost", {"steps": [{"id": "a", "action": "A_GHOST"}]})

        result = pipeline_runner.run("ghost")

        assert result.error == "Step 'a' (A_GHOST) failed: Action not found: A_GHOST"
        assert result.step_results == {}

    def test_forward_reference_resolves_to_none(self, pipeline_runner, user_pipelines):
        write_pipeline(
            user_pipelines,
            "early",
            {
                "steps": [
                    {"id": "a", "action": "debug/echo", "input": {"ref": "{{steps.b.output}}"}},
                    {"id": "b", "action": "debug/echo", "input": {"x": 1}},
                ],
                "output_mapping": "{{steps.a.output}}",
            },
        )

        result = pipeline_runner.run("early")

        assert result.success
        assert result.output == {"ref": None}

    def test_step_sees_pipeline_metadata(self, pipeline_runner, user_actions, user_pipelines):
        write_action(
            user_actions,
            "debug/where",
            """
            def execute(input, context):
                info = context.pipeline
                return {"pipeline": info.pipeline, "step": info.step_id, "index": info.step_index}
            """,
        )
        write_pipeline(
            user_pipelines,
            "where",
            {"steps": [{"id": "a", "action": "debug/echo"}, {"id": "b", "action": "debug/where"}]},
        )

        result = pipeline_runner.run("where")

        assert result.output == {"pipeline": "where", "step": "b", "index": 1}

    def test_parallel_and_foreach_run_once(self, pipeline_runner, user_pipelines, caplog):
        write_pipeline(
            user_pipelines,
            "fanout",
            {
                "steps": [
                    {"id": "a", "action": "math/add", "input": {"value": 1}, "parallel": True},
                    {"id": "b", "action": "math/add", "input": {"value": 5}, "foreach": "{{input.items}}"},
                ],
            },
        )

        with caplog.at_level(logging.WARNING, logger="pai.core.pipeline"):
            result = pipeline_runner.run("fanout", {"items": [1, 2]})

        assert result.output == {"value": 6}
        assert "uses 'parallel'" in caplog.text
        assert "uses 'foreach'" in caplog.text


class TestPipedPipeline:
    def test_chains_outputs(self, pipeline_runner, user_pipelines):
        write_pipeline(user_pipelines, "twice", {"actions": ["calc/inc", "A_INC"]})

        result = pipeline_runner.run("twice", {"v": 1})

        assert result.success
        assert result.output == {"v": 3}
        assert result.step_results == [
            {"action": "calc/inc", "output": {"v": 2}},
            {"action": "A_INC", "output": {"v": 3}},
        ]

    def test_failure(self, pipeline_runner, user_pipelines):
        write_pipeline(user_pipelines, "broken", {"actions": ["calc/inc", "A_FAIL", "A_INC"]})

        result = pipeline_runner.run("broken", {"v": 1})

        assert not result.success
        assert result.error == "Step 2 (A_FAIL) failed: Execution failed: step exploded"
        assert result.step_results == [{"action": "calc/inc", "output": {"v": 2}}]


class TestPipelineRunner:
    def test_not_found(self, pipeline_runner):
        result = pipeline_runner.run("nothing")

        assert not result.success
        assert result.error == "Pipeline not found: nothing"
        assert result.error_type == "resolution"

    def test_malformed_definition(self, pipeline_runner, user_pipelines):
        write_pipeline(user_pipelines, "broken", {"actions": []})

        result = pipeline_runner.run("broken")

        assert result.error_type == "definition"

    def test_user_pipeline_shadows_system(self, pipeline_runner, user_pipelines, system_pipelines):
        write_pipeline(system_pipelines, "bump", {"actions": ["calc/inc"]})
        write_pipeline(user_pipelines, "bump", {"actions": ["calc/inc", "calc/inc"]})

        assert pipeline_runner.run("bump", {"v": 0}).output == {"v": 2}

    def test_run_definition(self, pipeline_runner):
        definition = PipelineDefinition(name="inline", actions=["calc/inc"])

        result = pipeline_runner.run_definition(definition, {"v": 41})

        assert result.output == {"v": 42}
        assert result.metadata["pipeline"] == "inline"

    def test_progress_events(self, settings, actions, user_pipelines):
        write_pipeline(user_pipelines, "twice", {"actions": ["calc/inc", "calc/inc"]})
        observer = MagicMock()

        PipelineRunner.from_settings(settings, on_progress=observer).run("twice", {"v": 0})

        events = [call.args[0]["type"] for call in observer.call_args_list]
        assert events == [
            "pipeline_started",
            "step_started",
            "step_completed",
            "step_started",
            "step_completed",
            "pipeline_completed",
        ]

    def test_progress_on_failure(self, settings, actions, user_pipelines):
        write_pipeline(user_pipelines, "broken", {"actions": ["A_FAIL"]})
        observer = MagicMock()

        PipelineRunner.from_settings(settings, on_progress=observer).run("broken")

        failed = observer.call_args_list[2].args[0]
        assert failed["type"] == "step_failed"
        assert failed["action"] == "A_FAIL"
        assert observer.call_args_list[-1].args[0]["success"] is False

    def test_observer_errors_do_not_break_pipeline(self, settings, actions, user_pipelines):
        write_pipeline(user_pipelines, "twice", {"actions": ["calc/inc", "calc/inc"]})
        observer = MagicMock(side_effect=RuntimeError("observer down"))

        result = PipelineRunner.from_settings(settings, on_progress=observer).run("twice", {"v": 0})

        assert result.success
        assert result.output == {"v": 2}
