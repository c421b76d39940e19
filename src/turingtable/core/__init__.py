"""Table state, timing and the phase state machine."""
