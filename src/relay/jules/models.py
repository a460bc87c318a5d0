"""Jules task API models.

This module defines the data models returned by the Jules REST API:
- Source: A GitHub repository the API key can access
- PullRequest / SessionOutput: Result artifacts attached to a session
- Session: One remote task instance and its outputs
- CreateSessionRequest: Body of the create-session call

Field names follow the API's camelCase wire format through aliases, so
models can be built directly from response JSON with model_validate().
Unknown fields in responses are ignored.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


AUTO_CREATE_PR = "AUTO_CREATE_PR"


class Source(BaseModel):
    """A repository resource accessible to an API key.

    Attributes:
        name: Opaque resource name (e.g. "sources/github/acme/widgets").
        id: Short identifier (e.g. "github/acme/widgets").
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Opaque resource name of the source")
    id: str = Field(..., description="Short identifier of the source")


class PullRequest(BaseModel):
    """Pull request produced by a session."""

    url: str = Field(..., description="URL of the pull request")
    title: str = Field(default="", description="Title of the pull request")

    @field_validator("title", mode="before")
    @classmethod
    def null_title_is_empty(cls, v):
        return "" if v is None else v


class SessionOutput(BaseModel):
    """One output artifact of a session.

    Only pull request outputs are recognised; other output kinds parse
    with pull_request set to None.
    """

    model_config = ConfigDict(populate_by_name=True)

    pull_request: Optional[PullRequest] = Field(
        default=None,
        alias="pullRequest",
        description="Pull request created by the session, if any",
    )


class Session(BaseModel):
    """Snapshot of a remote Jules session.

    Every fetch returns a full snapshot, never a delta.

    Attributes:
        id: Session identifier used in GET /sessions/{id}.
        name: Resource name of the session.
        title: Title generated by Jules from the prompt, if any.
        outputs: Output artifacts accumulated so far.
    """

    id: str = Field(..., min_length=1, description="Session identifier")
    name: str = Field(default="", description="Resource name of the session")
    title: Optional[str] = Field(default=None, description="Session title")
    outputs: List[SessionOutput] = Field(
        default_factory=list,
        description="Output artifacts in the order Jules reports them",
    )

    # The API may send null for fields it has not populated yet
    @field_validator("name", mode="before")
    @classmethod
    def null_name_is_empty(cls, v):
        return "" if v is None else v

    @field_validator("outputs", mode="before")
    @classmethod
    def null_outputs_are_empty(cls, v):
        return [] if v is None else v

    @property
    def first_pull_request(self) -> Optional[PullRequest]:
        """Pull request of the first output, if the first output has one.

        Later outputs are never inspected.
        """
        if not self.outputs:
            return None
        return self.outputs[0].pull_request


class GitHubRepoContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    starting_branch: str = Field(..., alias="startingBranch")


class SourceContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str
    github_repo_context: GitHubRepoContext = Field(..., alias="githubRepoContext")


class CreateSessionRequest(BaseModel):
    """Body of POST /sessions."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1)
    source_context: SourceContext = Field(..., alias="sourceContext")
    automation_mode: str = Field(default=AUTO_CREATE_PR, alias="automationMode")

    @classmethod
    def for_source(
        cls,
        prompt: str,
        source_name: str,
        starting_branch: str,
    ) -> "CreateSessionRequest":
        """Build a request that auto-creates a PR from the given branch."""
        return cls(
            prompt=prompt,
            source_context=SourceContext(
                source=source_name,
                github_repo_context=GitHubRepoContext(
                    starting_branch=starting_branch,
                ),
            ),
        )

    def to_payload(self) -> dict:
        """Serialize to the camelCase JSON body the API expects."""
        return self.model_dump(by_alias=True)
