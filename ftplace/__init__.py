"""ftplace — priority-queued pixel art placement for a rate-limited shared canvas."""

__version__ = "1.0.0"
