"""Abstract base class for LLM service providers.

Defines the contract for any large-language-model backend used for search
term extraction, answer synthesis and related-document re-ranking.
Implementations may wrap the Anthropic API, OpenAI (or any
OpenAI-compatible endpoint), or a local Ollama server.  Every call site
stays provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider, OllamaLLMProvider
# Located in: src/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the knowledge engine.

    Prompts and responses are line-oriented free text; callers parse the
    response themselves and never rely on provider-specific structured
    output.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        src.utils.errors.LLMError
            If the API call fails or returns an invalid response.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider.

        Example return values: ``"anthropic"``, ``"openai"``, ``"ollama"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations should verify that credentials are present without
        making a full inference call.
        """

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm credentials are valid.

        Returns
        -------
        bool
            ``True`` if the provider accepted the credentials; ``False``
            otherwise.  Unlike :meth:`is_available`, this method actively
            contacts the remote service.
        """
