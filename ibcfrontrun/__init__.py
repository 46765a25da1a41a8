"""Front-running experiments for IBC packet relaying between two local chains."""

__version__ = "0.1.0"