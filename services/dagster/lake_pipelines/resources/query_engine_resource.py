# =============================================================================
# Query Engine Resource - Dagster GraphQL Operations
# =============================================================================
# Submits analytical statements as runs of analytical_query_job and reads
# their execution status through the Dagster webserver's GraphQL API.
# =============================================================================

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from dagster import ConfigurableResource
from pydantic import Field

from libs.models import TaskStatus

__all__ = ["QueryEngineResource", "ExecutionStatus", "QUERY_OP_NAME"]


# Op receiving the statement as input in analytical_query_job
QUERY_OP_NAME = "execute_analytical_query"

# Dagster run status -> task status; every other status is still running
_RUN_STATUS_TO_TASK_STATUS = {
    "SUCCESS": TaskStatus.SUCCEEDED,
    "FAILURE": TaskStatus.FAILED,
    "CANCELED": TaskStatus.FAILED,
}

LAUNCH_RUN_MUTATION = """
mutation LaunchRun(
    $repositoryLocationName: String!
    $repositoryName: String!
    $jobName: String!
    $runConfigData: RunConfigData
    $executionMetadata: ExecutionMetadata
) {
    launchRun(
        executionParams: {
            selector: {
                repositoryLocationName: $repositoryLocationName
                repositoryName: $repositoryName
                pipelineName: $jobName
            }
            runConfigData: $runConfigData
            executionMetadata: $executionMetadata
        }
    ) {
        __typename
        ... on LaunchRunSuccess { run { runId status } }
        ... on PipelineNotFoundError { message }
        ... on RunConfigValidationInvalid { errors { message } }
        ... on PythonError { message }
    }
}
"""

RUN_STATUS_QUERY = """
query RunStatusQuery($runId: ID!) {
    runOrError(runId: $runId) {
        __typename
        ... on Run {
            runId
            status
            startTime
            endTime
        }
        ... on RunNotFoundError {
            message
        }
        ... on PythonError {
            message
        }
    }
}
"""


@dataclass(frozen=True)
class ExecutionStatus:
    """Status of one query execution as reported by the engine."""

    run_id: str
    status: TaskStatus
    finish_time: Optional[datetime] = None


class QueryEngineResource(ConfigurableResource):
    """
    Dagster resource wrapping the query engine's submit/status API.

    Attributes:
        graphql_url: Dagster webserver GraphQL endpoint
        repository_location_name: Code location serving analytical_query_job
        repository_name: Repository name ("__repository__" for Definitions)
        job_name: Job executing analytical statements
        timeout_seconds: HTTP timeout per GraphQL call
    """

    graphql_url: str = Field(..., description="Dagster GraphQL endpoint")
    repository_location_name: str = Field("lake_pipelines", description="Dagster code location name")
    repository_name: str = Field("__repository__", description="Dagster repository name")
    job_name: str = Field("analytical_query_job", description="Job executing analytical statements")
    timeout_seconds: float = Field(30.0, description="HTTP timeout for GraphQL calls")

    def _execute_query(self, query: str, variables: Optional[dict] = None) -> dict:
        """Execute a GraphQL query."""
        response = httpx.post(
            self.graphql_url,
            json={"query": query, "variables": variables or {}},
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        result = response.json()

        if "errors" in result:
            raise RuntimeError(f"GraphQL error: {result['errors']}")

        return result.get("data", {})

    def submit_statement(
        self,
        statement: str,
        *,
        tags: Optional[dict[str, str]] = None,
    ) -> str:
        """
        Launch a run of the query job for one statement.

        Args:
            statement: SQL statement, already bound and rewritten
            tags: Extra run tags

        Returns:
            The Dagster run id, used as the task id

        Raises:
            RuntimeError: If the launch is rejected
            httpx.HTTPError: If the webserver cannot be reached
        """
        variables: dict[str, Any] = {
            "repositoryLocationName": self.repository_location_name,
            "repositoryName": self.repository_name,
            "jobName": self.job_name,
            "runConfigData": {
                "ops": {
                    QUERY_OP_NAME: {
                        "inputs": {"statement": {"value": statement}},
                    }
                }
            },
            "executionMetadata": {
                "tags": [{"key": k, "value": v} for k, v in (tags or {}).items()],
            },
        }

        data = self._execute_query(LAUNCH_RUN_MUTATION, variables)
        launch = data.get("launchRun", {})

        run = launch.get("run")
        if not run or not run.get("runId"):
            errors = launch.get("errors") or []
            message = launch.get("message") or "; ".join(
                e.get("message", "") for e in errors
            )
            raise RuntimeError(
                f"Failed to launch {self.job_name} ({launch.get('__typename')}): {message}"
            )

        return run["runId"]

    def get_execution_status(self, run_id: str) -> Optional[ExecutionStatus]:
        """
        Read the current status of a query execution.

        Returns:
            ExecutionStatus, or None if the engine does not know the run

        Raises:
            RuntimeError: For GraphQL or server-side errors
            httpx.HTTPError: If the webserver cannot be reached
        """
        data = self._execute_query(RUN_STATUS_QUERY, {"runId": run_id})
        run = data.get("runOrError", {})

        typename = run.get("__typename")
        if typename == "RunNotFoundError":
            return None
        if typename != "Run":
            raise RuntimeError(run.get("message") or f"Unexpected response: {typename}")

        status = _RUN_STATUS_TO_TASK_STATUS.get(run.get("status"), TaskStatus.RUNNING)
        finish_time = None
        if status.is_terminal:
            end_time = run.get("endTime")
            finish_time = (
                datetime.fromtimestamp(end_time, tz=timezone.utc)
                if end_time
                else datetime.now(timezone.utc)
            )

        return ExecutionStatus(run_id=run_id, status=status, finish_time=finish_time)
