"""Live quiz game services: sessions, membership, scoring, the question
flow state machine, event fan-out, rate limiting and session lifecycle.

Everything here is transport-agnostic apart from the router and the
background scheduler, which only need an object with Flask-SocketIO's
``emit``/``start_background_task``/``sleep`` surface.
"""
