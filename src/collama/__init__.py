"""collama: streaming LLM client and tool-calling agent for Ollama and OpenAI-compatible servers."""

__version__ = "0.1.0"
