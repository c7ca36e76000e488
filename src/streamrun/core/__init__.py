"""streamrun core — configuration, logging and metrics."""
