"""Game configuration dataclass.

Every timing constant of the table lives here so tests and the simulator can
shrink or stretch them. Defaults match the live voice game.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class GameConfig:
    """Configuration for one table.

    All durations are in seconds of scheduler time.
    """

    # ===========================================
    # ROSTER
    # ===========================================
    human_id: str = "player1"
    human_name: str = "Guest"  # Replaced by the name sent on join
    moderator_id: str = "moderator"
    roster_file: Optional[str] = None  # JSON roster override, see persona.roster

    # ===========================================
    # PHASE TIMING
    # ===========================================
    connect_timeout: float = 20.0  # Start the intro even if an AI seat never connects
    intro_exit_delay: float = 5.0  # Pause after the President's intro before round 1
    round_duration: float = 90.0  # Debate length per round
    round_tick_interval: float = 1.0
    round_overlay_hold: float = 3.0  # Round banner on the client; speech waits for it
    vote_timeout: float = 30.0  # Resolve with partial ballots after this
    reveal_delay: float = 10.0  # Results on screen before the elimination is enacted
    verdict_timeout: float = 60.0  # Hard stop if the President never delivers
    verdict_exit_delay: float = 2.0

    # ===========================================
    # AUDIO QUEUE
    # ===========================================
    queue_max_depth: int = 3  # Backlog this deep is stale; evict it
    chars_per_second: float = 15.0  # Speech rate used for duration estimates
    playback_timeout_multiplier: float = 2.0
    playback_timeout_floor: float = 3.0
    playback_timeout_ceiling: float = 45.0  # Absolute cap, whatever the estimate

    # ===========================================
    # TURN-TAKING
    # ===========================================
    obligation_timeout: float = 7.0  # Time an addressed participant has to answer
    human_silence_threshold: float = 30.0  # One "you've been quiet" callout per phase
    thinking_timeout: float = 3.0  # After typing stops, before AIs resume
    next_turn_delay_group: float = 2.5
    next_turn_delay_duel: float = 4.0  # One human, one AI left
    human_reply_delay: float = 1.0
    turn_response_timeout: float = 12.0  # Re-arbitrate if the chosen AI never speaks
    recent_window: int = 8  # Conversation entries shared with AIs and clients
    activity_window: int = 6  # Entries considered for least-active balancing
    enable_facilitator: bool = True
    text_mode_suspicion: bool = True
    text_mode_suspicion_delay: float = 2.0

    # ===========================================
    # AI PROVIDER
    # ===========================================
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    max_output_tokens: int = 120
    temperature: float = 0.9
    scripted_latency: float = 1.5  # Scripted provider response delay

    # ===========================================
    # SERVER
    # ===========================================
    server_host: str = "0.0.0.0"
    server_port: int = 8765
    ping_interval: float = 30.0

    # ===========================================
    # RUNTIME
    # ===========================================
    random_seed: Optional[int] = None
    verbose: bool = False
    save_logs: bool = False
    log_dir: str = "data/games"

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.queue_max_depth < 1:
            raise ValueError("queue_max_depth must be at least 1")
        if self.round_duration <= 0:
            raise ValueError("round_duration must be positive")
        if self.playback_timeout_ceiling < self.playback_timeout_floor:
            raise ValueError("playback_timeout_ceiling must not be below playback_timeout_floor")
        if self.recent_window < 1:
            raise ValueError("recent_window must be at least 1")

    @classmethod
    def from_env(cls, **overrides) -> "GameConfig":
        """Build a config from TURINGTABLE_* environment variables.

        Call load_dotenv() first if values live in a .env file. Keyword
        overrides win over the environment.
        """
        values = {}
        env_map = {
            "TURINGTABLE_HUMAN_NAME": ("human_name", str),
            "TURINGTABLE_ROSTER_FILE": ("roster_file", str),
            "TURINGTABLE_ROUND_DURATION": ("round_duration", float),
            "TURINGTABLE_REVEAL_DELAY": ("reveal_delay", float),
            "TURINGTABLE_VOTE_TIMEOUT": ("vote_timeout", float),
            "TURINGTABLE_HOST": ("server_host", str),
            "TURINGTABLE_PORT": ("server_port", int),
            "TURINGTABLE_SEED": ("random_seed", int),
            "GEMINI_API_KEY": ("gemini_api_key", str),
            "GEMINI_MODEL": ("gemini_model", str),
        }
        for env_name, (field_name, cast) in env_map.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = cast(raw)

        if os.getenv("TURINGTABLE_FACILITATOR", "").lower() in ("0", "false", "no"):
            values["enable_facilitator"] = False

        values.update(overrides)
        return cls(**values)
