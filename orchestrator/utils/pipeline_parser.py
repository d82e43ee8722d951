"""Pipeline definition parser for YAML format"""
import re
from typing import Dict, Any, List, Set, Tuple

import yaml
from pydantic import BaseModel

from shared.enums import JobState, JoinType
from shared.errors import PipelineDefinitionError
from shared.models import (START_MARKERS, Job, Pipeline, WorkflowEdge,
                           WorkflowGraph)


# sd@<pipeline id>:<job name>
_REMOTE_REQUIREMENT = re.compile(r"^sd@(\d+):([\w-]+)$")


class PipelineDefinition(BaseModel):
    """A parsed pipeline with its jobs"""
    pipeline: Pipeline
    jobs: List[Job]


def parse_yaml_pipelines(yaml_content: str) -> List[PipelineDefinition]:
    """Parse a YAML document describing one or more pipelines.

    Expected YAML format:
    ```yaml
    pipelines:
      - id: 1
        name: "app"
        scm_owner: "acme"
        jobs:
          - name: "build"
            requires: ["~commit"]
          - name: "test"
            requires: ["~commit"]
      - id: 2
        name: "deploy"
        scm_owner: "acme"
        jobs:
          - name: "deploy"
            requires: ["sd@1:build", "sd@1:test"]
    ```

    A requirement prefixed with "~" joins with OR, anything else with AND.
    Remote requirements are also linked into the graph of the pipeline they
    point at, so that its jobs know their downstream edges.

    Args:
        yaml_content: YAML string containing pipeline definitions

    Returns:
        List[PipelineDefinition]: Parsed and validated pipelines

    Raises:
        PipelineDefinitionError: If YAML is invalid, references unknown jobs
            or pipelines, or contains a cycle
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineDefinitionError(f"Invalid YAML: {e}")

    if not isinstance(data, dict):
        raise PipelineDefinitionError("YAML must contain a dictionary")

    if "pipelines" in data:
        pipeline_defs = data["pipelines"]
    elif "pipeline" in data:
        pipeline_defs = [data["pipeline"]]
    else:
        raise PipelineDefinitionError(
            "YAML must contain a 'pipelines' or 'pipeline' key")

    if not isinstance(pipeline_defs, list) or not pipeline_defs:
        raise PipelineDefinitionError("At least one pipeline is required")

    next_job_id = _IdSequence()
    parsed: Dict[int, Tuple[Dict[str, Any], List[Job], List[WorkflowEdge]]] = {}
    for idx, pipeline_def in enumerate(pipeline_defs):
        pipeline_id, jobs, edges = _parse_pipeline(pipeline_def, idx,
                                                   next_job_id)
        if pipeline_id in parsed:
            raise PipelineDefinitionError(
                f"Duplicate pipeline ID: {pipeline_id}")
        parsed[pipeline_id] = (pipeline_def, jobs, edges)

    job_names = {
        pipeline_id: {job.name for job in jobs}
        for pipeline_id, (_, jobs, _) in parsed.items()
    }
    _link_remote_edges(parsed, job_names)
    _validate_no_cycles(parsed)

    definitions = []
    for pipeline_id, (pipeline_def, jobs, edges) in parsed.items():
        nodes = sorted({edge.src for edge in edges if edge.is_start})
        nodes.extend(job.name for job in jobs)
        pipeline = Pipeline(id=pipeline_id,
                            name=pipeline_def["name"],
                            scm_owner=pipeline_def["scm_owner"],
                            trusted_owners=pipeline_def.get(
                                "trusted_owners", []),
                            workflow_graph=WorkflowGraph(nodes=nodes,
                                                         edges=edges))
        definitions.append(PipelineDefinition(pipeline=pipeline, jobs=jobs))

    return definitions


class _IdSequence:
    """Hands out job ids not used explicitly in the document"""

    def __init__(self):
        self.used: Set[int] = set()
        self.last = 0

    def reserve(self, job_id: int) -> int:
        if job_id in self.used:
            raise PipelineDefinitionError(f"Duplicate job ID: {job_id}")
        self.used.add(job_id)
        return job_id

    def __call__(self) -> int:
        self.last += 1
        while self.last in self.used:
            self.last += 1
        self.used.add(self.last)
        return self.last


def _parse_pipeline(
        pipeline_def: Dict[str, Any], index: int, next_job_id: _IdSequence
) -> Tuple[int, List[Job], List[WorkflowEdge]]:
    """Parse a single pipeline definition into its jobs and incoming edges."""
    if not isinstance(pipeline_def, dict):
        raise PipelineDefinitionError(
            f"Pipeline at index {index} must be a dictionary")

    for field in ("id", "name", "scm_owner"):
        if field not in pipeline_def:
            raise PipelineDefinitionError(
                f"Pipeline at index {index} must have an '{field}'")

    pipeline_id = pipeline_def["id"]
    if not isinstance(pipeline_id, int):
        raise PipelineDefinitionError(
            f"Pipeline at index {index} id must be an integer")

    trusted = pipeline_def.get("trusted_owners", [])
    if not isinstance(trusted, list) or not all(
            isinstance(o, str) for o in trusted):
        raise PipelineDefinitionError(
            f"Pipeline {pipeline_id} trusted_owners must be a list of strings")

    job_defs = pipeline_def.get("jobs")
    if not isinstance(job_defs, list) or not job_defs:
        raise PipelineDefinitionError(
            f"Pipeline {pipeline_id} must have a non-empty 'jobs' list")

    jobs: List[Job] = []
    requirements: Dict[str, List[str]] = {}
    for idx, job_def in enumerate(job_defs):
        try:
            job, requires = _parse_job(job_def, idx, pipeline_id, next_job_id)
        except (KeyError, ValueError, TypeError) as e:
            raise PipelineDefinitionError(
                f"Error parsing job at index {idx} of pipeline {pipeline_id}: {e}"
            )
        if job.name in requirements:
            raise PipelineDefinitionError(
                f"Duplicate job name in pipeline {pipeline_id}: {job.name}")
        requirements[job.name] = requires
        jobs.append(job)

    edges = []
    for job_name, requires in requirements.items():
        for requirement in requires:
            edges.append(
                _parse_requirement(requirement, job_name, pipeline_id,
                                   set(requirements)))

    return pipeline_id, jobs, edges


def _parse_job(job_def: Dict[str, Any], index: int, pipeline_id: int,
               next_job_id: _IdSequence) -> Tuple[Job, List[str]]:
    """Parse a single job definition.

    Returns:
        Tuple[Job, List[str]]: The job and its raw requirements
    """
    if not isinstance(job_def, dict):
        raise PipelineDefinitionError(
            f"Job at index {index} of pipeline {pipeline_id} must be a dictionary")

    if "name" not in job_def:
        raise PipelineDefinitionError(
            f"Job at index {index} of pipeline {pipeline_id} must have a 'name'")

    name = job_def["name"]
    if not isinstance(name, str) or name.startswith("~") or ":" in name:
        raise PipelineDefinitionError(f"Invalid job name: {name!r}")

    requires = job_def.get("requires", [])
    if isinstance(requires, str):
        requires = [requires]
    if not isinstance(requires, list) or not all(
            isinstance(r, str) for r in requires):
        raise PipelineDefinitionError(
            f"Job '{name}' requires must be a string or list of strings")

    virtual = job_def.get("virtual", False)
    if not isinstance(virtual, bool):
        raise PipelineDefinitionError(f"Job '{name}' virtual must be a boolean")

    try:
        state = JobState(job_def.get("state", JobState.ENABLED.value))
    except ValueError:
        valid_states = [s.value for s in JobState]
        raise PipelineDefinitionError(
            f"Job '{name}' has invalid state '{job_def['state']}'. "
            f"Valid states: {valid_states}")

    if "id" in job_def:
        if not isinstance(job_def["id"], int):
            raise PipelineDefinitionError(f"Job '{name}' id must be an integer")
        job_id = next_job_id.reserve(job_def["id"])
    else:
        job_id = None

    job = Job(id=job_id if job_id is not None else next_job_id(),
              pipeline_id=pipeline_id,
              name=name,
              virtual=virtual,
              state=state)
    return job, requires


def _parse_requirement(requirement: str, job_name: str, pipeline_id: int,
                       local_jobs: Set[str]) -> WorkflowEdge:
    """Turn one entry of a job's requires list into an incoming edge."""
    if requirement in START_MARKERS:
        return WorkflowEdge(src=requirement, dest=job_name, join=JoinType.OR)

    join = JoinType.AND
    target = requirement
    if target.startswith("~"):
        join = JoinType.OR
        target = target[1:]

    match = _REMOTE_REQUIREMENT.match(target)
    if match:
        src_pipeline_id = int(match.group(1))
        target = match.group(2)
        if src_pipeline_id != pipeline_id:
            return WorkflowEdge(src=target,
                                dest=job_name,
                                join=join,
                                src_pipeline_id=src_pipeline_id)

    if target not in local_jobs:
        raise PipelineDefinitionError(
            f"Job '{job_name}' in pipeline {pipeline_id} requires "
            f"non-existent job: '{target}'")
    return WorkflowEdge(src=target, dest=job_name, join=join)


def _link_remote_edges(parsed: Dict[int, Tuple[Dict[str, Any], List[Job],
                                               List[WorkflowEdge]]],
                       job_names: Dict[int, Set[str]]) -> None:
    """Copy remote edges into the graph of the pipeline they start from."""
    for pipeline_id, (_, _, edges) in parsed.items():
        for edge in list(edges):
            source = edge.src_pipeline_id
            if source is None:
                continue
            if source not in parsed:
                raise PipelineDefinitionError(
                    f"Job '{edge.dest}' in pipeline {pipeline_id} requires "
                    f"unknown pipeline {source}")
            if edge.src not in job_names[source]:
                raise PipelineDefinitionError(
                    f"Job '{edge.dest}' in pipeline {pipeline_id} requires "
                    f"non-existent job '{edge.src}' of pipeline {source}")
            parsed[source][2].append(
                WorkflowEdge(src=edge.src,
                             dest=edge.dest,
                             join=edge.join,
                             dest_pipeline_id=pipeline_id))


def _validate_no_cycles(parsed: Dict[int, Tuple[Dict[str, Any], List[Job],
                                                List[WorkflowEdge]]]) -> None:
    """Check for circular dependencies across all pipelines using DFS."""
    children: Dict[Tuple[int, str], Set[Tuple[int, str]]] = {}
    for pipeline_id, (_, jobs, edges) in parsed.items():
        for job in jobs:
            children.setdefault((pipeline_id, job.name), set())
        for edge in edges:
            if edge.is_start:
                continue
            src = (edge.source_pipeline(pipeline_id), edge.src)
            dest = (edge.destination_pipeline(pipeline_id), edge.dest)
            children.setdefault(src, set()).add(dest)

    visited: Set[Tuple[int, str]] = set()
    rec_stack: Set[Tuple[int, str]] = set()

    def has_cycle(node: Tuple[int, str]) -> bool:
        visited.add(node)
        rec_stack.add(node)

        for neighbor in children.get(node, set()):
            if neighbor not in visited:
                if has_cycle(neighbor):
                    return True
            elif neighbor in rec_stack:
                return True

        rec_stack.remove(node)
        return False

    for node in list(children):
        if node not in visited:
            if has_cycle(node):
                pipeline_id, job_name = node
                raise PipelineDefinitionError(
                    f"Circular dependency detected involving job: "
                    f"{job_name}@{pipeline_id}")


def load_pipelines_file(path: str) -> List[PipelineDefinition]:
    """Read and parse a pipeline definition file."""
    with open(path) as f:
        return parse_yaml_pipelines(f.read())
