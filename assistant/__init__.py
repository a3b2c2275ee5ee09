"""Appointment Assistant: a chat-driven appointment booking backend.

Architecture Overview
=====================

Two FastAPI services share one PostgreSQL database:

1. **API gateway** (``assistant.gateway``) sits in front of the React chat
   UI.  It issues and checks JWTs, rate-limits clients, serves appointment
   CRUD and chatbot session/history endpoints, and forwards chat turns to
   the AI service.

2. **AI service** (``assistant.server``) runs the conversation loop: load
   recent history (in-process cache, database on miss), invoke a
   **LangGraph** tool-calling agent, persist the exchange and log the
   interaction.

Key Design Decisions
--------------------
- **Double-booking**: prevented by a partial unique index on
  ``(provider, start_time)`` over non-cancelled appointments.  Services
  insert/update and translate the integrity error; there is no
  check-then-insert race.
- **Acting user**: the agent's tools read the user ID from the run
  configuration, never from model output.
- **LLM**: OpenAI by default, Anthropic via ``LLM_PROVIDER=anthropic``.
- **Resilience**: the gateway's AI client retries timeouts and 5xx with
  exponential backoff (3 attempts).

Package Structure
-----------------
- ``assistant/config.py`` — configuration from env vars / SSM
- ``assistant/db/`` — SQLAlchemy models and session management
- ``assistant/services/`` — users, appointments, chat, cache, conversation
  loop, security, rate limiting, metrics, AI service client
- ``assistant/tools/`` — LangChain booking tools
- ``assistant/agent.py`` — LangGraph StateGraph definition
- ``assistant/api/`` — FastAPI routers, schemas and middleware
- ``assistant/gateway.py`` / ``assistant/server.py`` — the two apps
- ``assistant/main.py`` — CLI chat interface
"""

__version__ = "1.0.0"
