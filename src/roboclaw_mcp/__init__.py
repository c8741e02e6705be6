"""roboclaw-mcp: RoboClaw motor control, identification and PID autotuning over MCP.

Subpackages:
    drivers: Packet serial protocol, transport and the digital twin
    devices: Backend-agnostic MotorDriver
    analysis: Sampling, estimators, experiments and autotuning
    tools: MCP tool definitions
    observability: Structured logging and exchange statistics
"""

__version__ = "0.1.0"
