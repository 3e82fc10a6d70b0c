"""Call-taker backend — dispatch integration for a voice call-taking agent.

Architecture Overview
=====================

Each caller turn arrives as ``POST /agent/message`` (extension, agent UID,
caller phone, what the caller said).  The backend:

1. Resolves the **company** from the dialled extension and the **agent**
   from its UID (JSON directory files, re-read per request).
2. Obtains a **bearer token** for (tenant, agent email) from the dispatch
   API.  Tokens are cached with a soft TTL and refreshed single-flight.
3. Reads the tenant's **voucher accounts** through a TTL cache that serves
   stale data when the dispatch API is down.
4. Looks up the caller's **reservation**: status by phone, then detail by
   RID, merging the two and degrading gracefully at every step.
5. Assembles a system prompt and makes one **Responses API** call.

Key Design Decisions
--------------------
- **Explicit shared state**: one ``CallTakerAgent`` per process owns both
  caches; FastAPI's lifespan builds it and routes reach it via ``app.state``.
- **asyncio throughout**: per-key ``asyncio.Lock`` + one shared refresh task
  gives single-flight refreshes; task cancellation is the cancel signal.
- **Best-effort enrichment**: only configuration and LLM failures reach the
  HTTP caller; dispatch problems become notes the model must not read aloud.

Package Structure
-----------------
- ``calltaker/agent.py`` — per-turn pipeline and process-wide assembly
- ``calltaker/config.py`` — configuration from env / .env / SSM
- ``calltaker/directory.py`` — agents / companies / prompts JSON files
- ``calltaker/prompts.py`` — system prompt assembly
- ``calltaker/server.py`` — FastAPI application
- ``calltaker/main.py`` — CLI call simulation
- ``calltaker/services/`` — transport, token cache, dispatch client,
  account cache, reservation lookup, LLM client, metrics
- ``calltaker/api/`` — FastAPI routes and Pydantic schemas
"""
