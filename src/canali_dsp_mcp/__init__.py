"""Control and telemetry for Powersoft Canali-DSP amplifiers over UDP."""

__version__ = "0.1.0"
