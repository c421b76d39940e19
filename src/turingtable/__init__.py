"""TuringTable: orchestration core for a reverse Turing test party game.

One human hides among AI players on a voice call. The package runs the
phases, turn-taking, single-speaker audio queue and voting for that table.
"""

__version__ = "0.1.0"
