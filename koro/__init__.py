"""
Koro — a personal assistant agent that remembers.

Koro turns a user message into a grounded, tool-augmented reply from an LLM
provider while keeping every conversation on local disk across restarts.

Layers (bottom to top):
    1. LLM clients (Anthropic / OpenAI-compatible) with retry and backoff
    2. Tool registry shared by the agent and the JSON-RPC tool protocol
    3. Flat-file memory (core files, daily logs, periodic summaries)
    4. Session store (per-key locking, atomic persistence)
    5. Context builder and the bounded tool-calling loop
    6. Agent façade, channels, HTTP gateway and CLI
"""

__version__ = "0.1.0"
