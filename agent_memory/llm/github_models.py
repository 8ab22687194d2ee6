"""
GitHub Models Provider - Chat completions and embeddings via the
OpenAI-compatible GitHub Models inference endpoint.
"""

from typing import Dict, Optional

from .openai_provider import OpenAIProvider


class GitHubModelsProvider(OpenAIProvider):
    """
    GitHub Models API provider.

    Authenticates with a GitHub token and uses publisher-qualified model
    names such as ``openai/text-embedding-3-small``.
    """

    name = "github-models"

    DEFAULT_API_BASE = "https://models.github.ai/inference"
    API_KEY_ENV = "GITHUB_TOKEN"
    API_VERSION = "2022-11-28"

    def _default_headers(self) -> Optional[Dict[str, str]]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": self.API_VERSION,
        }
