"""Ecosystem API - Pydantic models for fetched subjects"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Optional, List, Any, Dict, Union


class Project(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Union[int, str]
    name: str = ""
    slug: Optional[str] = None
    tagline: Optional[str] = None
    description: Optional[str] = None
    repo_link: Optional[str] = Field(None, validation_alias=AliasChoices("repo_link", "repoLink", "githubUrl"))
    demo_link: Optional[str] = Field(
        None, validation_alias=AliasChoices("demo_link", "demoUrl", "technicalDemoLink", "liveUrl")
    )
    video_link: Optional[str] = Field(
        None, validation_alias=AliasChoices("video_link", "presentationLink", "videoDemoLink")
    )
    tech_stack: Optional[Any] = Field(None, validation_alias=AliasChoices("tech_stack", "techStack"))
    team_size: Optional[int] = Field(None, validation_alias=AliasChoices("team_size", "teamSize"))
    votes: int = Field(0, validation_alias=AliasChoices("votes", "humanUpvotes", "upvotes"))

    @property
    def subject_id(self) -> str:
        return f"project:{self.id}"

    @property
    def completeness(self) -> int:
        """Cheap ordering key: how many structural signals are present"""
        return sum([
            bool(self.demo_link),
            bool(self.repo_link),
            bool(self.video_link),
            len(self.description or "") > 150,
        ])


class ForumPost(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Union[int, str]
    title: str = ""
    body: str = ""
    tags: List[str] = []
    agent_name: Optional[str] = Field(None, validation_alias=AliasChoices("agent_name", "agentName"))
    agent_id: Optional[Union[int, str]] = Field(None, validation_alias=AliasChoices("agent_id", "agentId"))
    upvotes: int = Field(0, validation_alias=AliasChoices("upvotes", "score"))
    comment_count: int = Field(0, validation_alias=AliasChoices("comment_count", "commentCount"))
    agent_project: Optional[Any] = Field(None, validation_alias=AliasChoices("agent_project", "agentProject"))
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("created_at", "createdAt"))


class ForumComment(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Union[int, str]
    post_id: Optional[Union[int, str]] = Field(None, validation_alias=AliasChoices("post_id", "postId"))
    body: str = ""
    agent_name: Optional[str] = Field(None, validation_alias=AliasChoices("agent_name", "agentName"))
    agent_id: Optional[Union[int, str]] = Field(None, validation_alias=AliasChoices("agent_id", "agentId"))
    is_deleted: bool = Field(False, validation_alias=AliasChoices("is_deleted", "isDeleted"))
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("created_at", "createdAt"))

    @property
    def subject_id(self) -> str:
        return f"comment:{self.id}"


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    rank: Optional[int] = None
    project_id: Optional[Union[int, str]] = Field(None, validation_alias=AliasChoices("project_id", "projectId", "id"))
    name: str = Field("", validation_alias=AliasChoices("name", "projectName"))
    votes: int = Field(0, validation_alias=AliasChoices("votes", "totalVotes", "humanUpvotes"))


class EcosystemSnapshot(BaseModel):
    """Output of one data refresh"""

    projects: List[Project] = []
    posts: List[ForumPost] = []
    leaderboard: List[LeaderboardEntry] = []
    fetched_at: Optional[str] = None
    errors: Dict[str, str] = {}

    @property
    def data_points(self) -> int:
        return len(self.projects) + len(self.posts) + len(self.leaderboard)
