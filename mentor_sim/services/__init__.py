"""Rule helpers used by ``mentor_sim.service``.

Each module owns one slice of the quarterly settlement: mentorship influence,
the paper pipeline, the grant lifecycle, roster actions and narrative
generation with template fallbacks.
"""
