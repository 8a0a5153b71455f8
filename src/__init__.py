"""Aparatus booking assistant: conversational scheduling for a barbershop
marketplace.

Architecture Overview
=====================

The assistant is a **LangGraph** state machine that drives a tool-calling
Claude model through a bounded reasoning ⇄ tool loop:

1. **chatbot** — streams Claude over the framing (persona, today's date, who
   is logged in, their recent bookings, the booking procedure) and the
   conversation.  The model either answers or asks for tools.

2. **tools** — validates each requested call against its pydantic schema and
   runs the valid ones concurrently against the marketplace backend.

3. **budget_exhausted** — closes the turn once the step budget is spent.

Routing: chatbot → (tool calls?) → tools → chatbot (loop, at most
``MAX_STEPS`` model calls) → END

Key Design Decisions
--------------------
- **Failures are data**: tool executors never raise.  Validation, login,
  not-found and backend failures all come back to the model as dicts it can
  explain to the user.
- **Auth at the point of effect**: ``createBooking`` and
  ``getUserBookingHistory`` check the session themselves; the loop has no
  separate permission gate.
- **Stateless turns**: the client resends the full conversation each
  request; the graph has no checkpointer.
- **Streaming**: nodes emit UI events through LangGraph's stream writer and
  the API relays them as Server-Sent Events in the format the existing chat
  frontend consumes.
- **Framing as data**: the conversational procedure is a
  ``ConversationPolicy`` object rendered per request.

Package Structure
-----------------
- ``src/agent.py`` — LangGraph StateGraph definition
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/prompts.py`` — Conversation policy and framing builder
- ``src/session.py`` — Per-request caller context
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI chat interface
- ``src/services/`` — Marketplace client, catalog cache, metrics
- ``src/tools/`` — Tool registry and the six marketplace tools
- ``src/api/`` — Routes, schemas and SSE streaming
"""
