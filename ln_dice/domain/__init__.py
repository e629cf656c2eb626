"""Domain layer (pure logic).

- Keep game rules and calculations here.
- Avoid I/O: no HTTP clients, no FastAPI, no schedulers.
- Prefer deterministic functions (random source passed in as an argument).
"""
