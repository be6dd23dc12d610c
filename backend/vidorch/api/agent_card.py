"""Discovery document for the orchestrator itself."""

from vidorch import __version__
from vidorch.schemas.a2a import AgentCapabilities, AgentCard, AgentSkill, text_message


def build_agent_card(public_url: str) -> AgentCard:
    return AgentCard(
        name="Music Video Orchestrator Agent",
        description=(
            "Orchestrates the creation of complete music videos from a user prompt, "
            "coordinating song, script and media generation agents over A2A. Pauses "
            "for review after every step and returns the final video together with "
            "all intermediate artifacts."
        ),
        url=public_url.rstrip("/"),
        version=__version__,
        capabilities=AgentCapabilities(
            streaming=True,
            push_notifications=True,
            state_transition_history=True,
        ),
        default_input_modes=["text/plain", "application/json"],
        default_output_modes=["application/json", "text/plain"],
        skills=[
            AgentSkill(
                id="music-video-orchestration",
                name="Music Video Generation",
                description=(
                    "Generates a full music video (MP4) from a creative prompt. Produces a "
                    "song, a script with characters, settings and scenes, reference images, "
                    "one clip per scene and the compiled video. Reply to each pause to "
                    "accept, retry or modify the step."
                ),
                tags=["music", "video", "orchestration", "a2a", "multimodal"],
                examples=[
                    text_message("user", "Create a cyberpunk rap anthem about AI collaboration.").to_wire(),
                    text_message("user", "Make a pop video about summer adventures with robots.").to_wire(),
                ],
                input_modes=["text/plain", "application/json"],
                output_modes=["application/json", "video/mp4", "text/plain"],
            )
        ],
    )
