"""mediaflow: job dispatch, GPU fleet autoscaling and credit accounting."""

__version__ = "0.1.0"
