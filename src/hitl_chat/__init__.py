"""hitl-chat - OpenAI and Chainlit chat agents with human-approved tool calls."""

__version__ = "0.1.0"
