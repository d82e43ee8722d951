"""Unit tests for pipeline definition parsing"""
import pytest

from orchestrator.utils.pipeline_parser import (load_pipelines_file,
                                                parse_yaml_pipelines)
from shared.enums import JobState, JoinType
from shared.errors import PipelineDefinitionError
from shared.models import WorkflowEdge
from tests.conftest import FAN_IN_YAML


@pytest.mark.unit
class TestPipelineParsing:
    """Test parsing valid pipeline definitions"""

    def test_parse_fan_in(self) -> None:
        app, deploy = parse_yaml_pipelines(FAN_IN_YAML)

        assert app.pipeline.id == 1
        assert app.pipeline.scm_owner == "acme"
        assert [job.name for job in app.jobs] == ["build", "test", "package"]
        assert [job.id for job in deploy.jobs] == [4, 5, 6]
        assert app.pipeline.workflow_graph.nodes == [
            "~commit", "build", "test", "package"
        ]

    def test_local_join_types(self) -> None:
        app, _ = parse_yaml_pipelines(FAN_IN_YAML)

        parents = app.pipeline.workflow_graph.parents(1, "package")

        assert parents == {(1, "build"): JoinType.AND, (1, "test"): JoinType.AND}

    def test_remote_parents(self) -> None:
        _, deploy = parse_yaml_pipelines(FAN_IN_YAML)
        graph = deploy.pipeline.workflow_graph

        assert graph.parents(2, "deploy") == {
            (1, "build"): JoinType.AND,
            (1, "test"): JoinType.AND
        }
        assert graph.parents(2, "audit") == {(1, "build"): JoinType.OR}

    def test_remote_edges_linked_into_source(self) -> None:
        app, _ = parse_yaml_pipelines(FAN_IN_YAML)

        outgoing = app.pipeline.workflow_graph.outgoing(1, "build")

        assert outgoing == [
            WorkflowEdge(src="build", dest="package", join=JoinType.AND),
            WorkflowEdge(src="build",
                         dest="deploy",
                         join=JoinType.AND,
                         dest_pipeline_id=2),
            WorkflowEdge(src="build",
                         dest="audit",
                         join=JoinType.OR,
                         dest_pipeline_id=2),
        ]

    def test_single_pipeline_key(self) -> None:
        [definition] = parse_yaml_pipelines("""
pipeline:
  id: 7
  name: solo
  scm_owner: acme
  trusted_owners: ["*"]
  jobs:
    - name: main
      requires: "~pr"
    - name: gate
      id: 70
      virtual: true
      requires: [main]
    - name: nightly
      state: disabled
""")

        main, gate, nightly = definition.jobs
        assert definition.pipeline.trusted_owners == ["*"]
        assert main.id == 1
        assert gate.id == 70 and gate.virtual
        assert nightly.state == JobState.DISABLED
        assert definition.pipeline.workflow_graph.incoming(7, "nightly") == []

    def test_start_markers_are_not_parents(self) -> None:
        app, _ = parse_yaml_pipelines(FAN_IN_YAML)
        graph = app.pipeline.workflow_graph

        assert [e.src for e in graph.incoming(1, "build")] == ["~commit"]
        assert graph.parents(1, "build") == {}

    def test_self_reference_by_remote_notation(self) -> None:
        [definition] = parse_yaml_pipelines("""
pipeline:
  id: 1
  name: app
  scm_owner: acme
  jobs:
    - name: build
    - name: test
      requires: ["sd@1:build"]
""")

        assert definition.pipeline.workflow_graph.parents(1, "test") == {
            (1, "build"): JoinType.AND
        }

    def test_load_file(self, tmp_path) -> None:
        path = tmp_path / "pipelines.yaml"
        path.write_text(FAN_IN_YAML)

        assert len(load_pipelines_file(str(path))) == 2


@pytest.mark.unit
class TestPipelineValidation:
    """Test rejection of invalid definitions"""

    @pytest.mark.parametrize("content, message", [
        ("pipelines: [", "Invalid YAML"),
        ("- a\n- b", "must contain a dictionary"),
        ("jobs: []", "'pipelines' or 'pipeline'"),
        ("pipelines: []", "At least one pipeline"),
        ("pipeline: {name: x, scm_owner: y, jobs: [{name: a}]}",
         "must have an 'id'"),
        ("pipeline: {id: x, name: x, scm_owner: y, jobs: [{name: a}]}",
         "id must be an integer"),
        ("pipeline: {id: 1, name: x, scm_owner: y, jobs: []}",
         "non-empty 'jobs'"),
        ("pipeline: {id: 1, name: x, scm_owner: y, jobs: [{requires: []}]}",
         "must have a 'name'"),
        ("pipeline: {id: 1, name: x, scm_owner: y, jobs: [{name: a}, {name: a}]}",
         "Duplicate job name"),
        ("pipeline: {id: 1, name: x, scm_owner: y, jobs: [{name: a, state: off}]}",
         "invalid state"),
        ("pipeline: {id: 1, name: x, scm_owner: y, jobs: [{name: a, requires: [b]}]}",
         "non-existent job: 'b'"),
        ("pipeline: {id: 1, name: x, scm_owner: y, jobs: [{name: a, requires: ['sd@9:b']}]}",
         "unknown pipeline 9"),
        ("pipeline: {id: 1, name: x, scm_owner: y, trusted_owners: z, jobs: [{name: a}]}",
         "trusted_owners"),
    ])
    def test_invalid_definition(self, content: str, message: str) -> None:
        with pytest.raises(PipelineDefinitionError, match=message):
            parse_yaml_pipelines(content)

    def test_duplicate_pipeline_id(self) -> None:
        with pytest.raises(PipelineDefinitionError, match="Duplicate pipeline ID"):
            parse_yaml_pipelines("""
pipelines:
  - {id: 1, name: a, scm_owner: o, jobs: [{name: x}]}
  - {id: 1, name: b, scm_owner: o, jobs: [{name: y}]}
""")

    def test_duplicate_job_id(self) -> None:
        with pytest.raises(PipelineDefinitionError, match="Duplicate job ID"):
            parse_yaml_pipelines("""
pipeline:
  id: 1
  name: app
  scm_owner: acme
  jobs:
    - {name: a, id: 3}
    - {name: b, id: 3}
""")

    def test_unknown_remote_job(self) -> None:
        with pytest.raises(PipelineDefinitionError,
                           match="non-existent job 'lint' of pipeline 1"):
            parse_yaml_pipelines("""
pipelines:
  - {id: 1, name: a, scm_owner: o, jobs: [{name: build}]}
  - {id: 2, name: b, scm_owner: o, jobs: [{name: deploy, requires: ["sd@1:lint"]}]}
""")

    def test_local_cycle(self) -> None:
        with pytest.raises(PipelineDefinitionError, match="Circular dependency"):
            parse_yaml_pipelines("""
pipeline:
  id: 1
  name: app
  scm_owner: acme
  jobs:
    - {name: a, requires: [c]}
    - {name: b, requires: [a]}
    - {name: c, requires: [b]}
""")

    def test_cross_pipeline_cycle(self) -> None:
        with pytest.raises(PipelineDefinitionError, match="Circular dependency"):
            parse_yaml_pipelines("""
pipelines:
  - {id: 1, name: a, scm_owner: o, jobs: [{name: build, requires: ["sd@2:deploy"]}]}
  - {id: 2, name: b, scm_owner: o, jobs: [{name: deploy, requires: ["sd@1:build"]}]}
""")
