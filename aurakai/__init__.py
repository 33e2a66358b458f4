"""Multi-agent context orchestration and conversation pipeline"""

__version__ = "0.1.0"
