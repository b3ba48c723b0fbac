"""Instruction table for each step of the guided heart check."""

from __future__ import annotations

from typing import Dict

from models import Instruction, Step

MAX_RECORDING_S = 30

STEP_INSTRUCTIONS: Dict[Step, Instruction] = {
    Step.WELCOME: Instruction(
        title="Hello! I'm your Heart Health Assistant",
        subtitle="Let's analyze your heart sounds together",
        voice="Hello! I'm your Heart Health Assistant. Let's analyze your heart sounds together.",
        duration_s=3.0,
    ),
    Step.DEVICE_CHECK: Instruction(
        title="Connect your stethoscope",
        subtitle="Make sure your device is properly connected",
        voice="First, please connect your stethoscope and make sure it is selected as the input device.",
        duration_s=4.0,
    ),
    Step.POSITIONING: Instruction(
        title="Position the stethoscope",
        subtitle="Place it gently on your chest, just below the left nipple",
        voice=(
            "Now, place the stethoscope gently on your chest, just below the left nipple. "
            "Make sure it has good contact with your skin."
        ),
        duration_s=5.0,
    ),
    Step.LISTENING: Instruction(
        title="Stay still and breathe normally",
        subtitle="I'm listening for your heartbeat...",
        voice="Perfect! Now stay still and breathe normally. I'm listening for your heartbeat.",
        duration_s=3.0,
    ),
    Step.RECORDING: Instruction(
        title="Recording your heart sounds",
        subtitle=f"Please remain still for {MAX_RECORDING_S} seconds",
        voice=(
            "I'm now recording your heart sounds. Please remain still and breathe normally "
            f"for the next {MAX_RECORDING_S} seconds."
        ),
        duration_s=float(MAX_RECORDING_S),
    ),
    Step.ANALYZING: Instruction(
        title="Analyzing your recording",
        subtitle="Processing your heart sound patterns...",
        voice="Great! I'm now analyzing your heart sound patterns. This will take just a moment.",
        duration_s=5.0,
    ),
    Step.RESULTS: Instruction(
        title="Analysis Complete",
        subtitle="Here are your heart health insights",
        voice="Analysis complete! Here are your heart health insights.",
        duration_s=2.0,
    ),
    Step.COMPLETE: Instruction(
        title="All Done!",
        subtitle="Take care of your heart health",
        voice="All done! Take care of your heart health!",
        duration_s=3.0,
    ),
}
