from glassist.gitlab.client import GitLabClient, GitLabResponse

__all__ = ["GitLabClient", "GitLabResponse"]
